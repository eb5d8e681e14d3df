from typing import Any, Dict, Optional, Tuple
from sqlalchemy.ext.asyncio import AsyncSession
from atelier.auth import repository as repo
from atelier.auth.constants import logger
from atelier.auth.models import SignIn, SignupIn
from atelier.auth.utils import create_access_token, hash_password, verify_password
from atelier.cache.sessions import SessionStore
from atelier.cart.services import MergeResult, merge_on_login
from atelier.common.errors import EmailTaken, InvalidCredentials, UserNotFound
from atelier.config.settings import Settings
from atelier.schema.full_schema import User, UserRole


def serialize_user(user: User) -> Dict[str, Any]:
    return {
        "id": user.id,
        "email": user.email,
        "name": user.name,
        "role": user.role,
        "created_at": user.created_at.isoformat() if user.created_at else None,
    }


async def create_user(session: AsyncSession, payload: SignupIn, settings: Settings) -> User:
    """First account (or the configured ADMIN_EMAIL) becomes admin, everyone else a customer."""
    if await repo.get_user_by_email(session, payload.email) is not None:
        raise EmailTaken(f"Email {payload.email} is already registered")

    is_first = await repo.count_users(session) == 0
    is_admin = is_first or (settings.ADMIN_EMAIL is not None and payload.email == settings.ADMIN_EMAIL.lower())
    role = UserRole.ADMIN.value if is_admin else UserRole.CUSTOMER.value

    pwd_hash = hash_password(payload.password, settings.PASS_HASH_SCHEME)
    user = await repo.insert_user(session, payload.email, pwd_hash, payload.name, role)
    logger.info("signup.user_created", extra={"user_id": user.id, "role": role})
    return user


async def authenticate(session: AsyncSession, payload: SignIn, settings: Settings) -> User:
    user = await repo.get_user_by_email(session, payload.email.strip().lower())
    if user is None or not verify_password(payload.password, user.password_hash, settings.PASS_HASH_SCHEME):
        logger.warning("login.failed", extra={"email": payload.email, "reason": "invalid_credentials"})
        raise InvalidCredentials("Invalid email or password")
    return user


async def login(session: AsyncSession, store: SessionStore, payload: SignIn, settings: Settings,
                anonymous_key: Optional[str] = None, user_agent: Optional[str] = None) -> Tuple[str, User, MergeResult]:
    """Verify credentials, fold the anonymous cart in, then open the server side session and issue a token."""
    user = await authenticate(session, payload, settings)

    merge = await merge_on_login(session, anonymous_key, user.id)
    await session.commit()

    await store.create(user.id, user_agent=user_agent)
    token = create_access_token(settings, user.id, user.role, user.email)
    return token, user, merge


async def logout(store: SessionStore, user_id: int) -> bool:
    return await store.delete(user_id)


async def get_profile(session: AsyncSession, user_id: int) -> User:
    user = await repo.get_user_by_id(session, user_id)
    if user is None:
        raise UserNotFound(f"User {user_id} not found")
    return user


async def sync_session(store: SessionStore, user_id: int, client_data: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    return await store.update_client_data(user_id, client_data)
