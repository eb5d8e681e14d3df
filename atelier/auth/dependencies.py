from email_validator import validate_email, EmailNotValidError
from fastapi import Request
from atelier.auth.constants import logger
from atelier.auth.models import Identity, SignupIn
from atelier.auth.utils import make_anonymous_key, validate_password
from atelier.cache.sessions import SessionStore
from atelier.common.errors import Forbidden, NotAuthenticated, ValidationFailed
from atelier.config.settings import Settings


def normalize_email_address(email: str) -> str:
    """
    Validate and return normalized email (lowercased, normalized by email-validator).
    Raises ValueError if invalid.
    """
    try:
        v = validate_email(email, check_deliverability=False)
        return v.normalized.lower()
    except EmailNotValidError as e:
        raise ValueError(str(e))


async def signup_validation(payload: SignupIn) -> SignupIn:
    try:
        email = normalize_email_address(payload.email)
    except ValueError as e:
        logger.warning("signup.validation.email_invalid", extra={"email": payload.email, "error": str(e)})
        raise ValidationFailed(f"Invalid email: {e}")

    is_valid, detail = validate_password(payload.password)
    if not is_valid:
        logger.warning("signup.validation.password_invalid", extra={"email": email, "reason": detail})
        raise ValidationFailed(detail)

    return payload.model_copy(update={"email": email})


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_session_store(request: Request) -> SessionStore:
    return request.app.state.session_store


def current_identity(request: Request) -> Identity:
    # set by IdentityMiddleware for every request
    return getattr(request.state, "identity", None) or Identity()


def cart_identity(request: Request) -> Identity:
    """Identity used to address a cart. Anonymous visitors without a cookie get a key minted here;
    IdentityMiddleware writes it back as a cookie on the way out."""
    identity = current_identity(request)
    if identity.is_authenticated or identity.session_key:
        return identity

    key = make_anonymous_key()
    request.state.new_anonymous_key = key
    identity = Identity(session_key=key)
    request.state.identity = identity
    return identity


def require_user(request: Request) -> Identity:
    identity = current_identity(request)
    if not identity.is_authenticated:
        raise NotAuthenticated("Authentication required")
    return identity


def require_admin(request: Request) -> Identity:
    identity = require_user(request)
    if not identity.is_admin:
        logger.warning("auth.admin.forbidden", extra={"user_id": identity.user_id, "path": request.url.path})
        raise Forbidden("Admin role required")
    return identity
