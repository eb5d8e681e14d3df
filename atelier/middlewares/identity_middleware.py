from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from atelier.auth.constants import BEARER_PREFIX
from atelier.auth.models import Identity
from atelier.auth.utils import decode_token
from atelier.common.custom_exceptions import domain_error_response
from atelier.common.errors import SessionExpired, TokenInvalid
from atelier.middlewares.constants import logger


class IdentityMiddleware(BaseHTTPMiddleware):
    """Resolve every request to an identity before routing.

    No Authorization header: anonymous, keyed by the anonymous session cookie (if any).
    Bearer token: signature and expiry are checked locally, then the session record in
    redis must exist; its absence means the token was revoked by logout or an admin.
    """

    def __init__(self, app, *, public_paths=()):
        super().__init__(app)
        self.public_paths = tuple(public_paths)

    async def dispatch(self, request: Request, call_next):
        settings = request.app.state.settings
        store = request.app.state.session_store

        auth_header = request.headers.get("Authorization")
        if not auth_header or any(request.url.path.startswith(p) for p in self.public_paths):
            session_key = request.cookies.get(settings.ANON_COOKIE_NAME)
            request.state.identity = Identity(session_key=session_key)
            response = await call_next(request)
            return self._maybe_set_anonymous_cookie(request, response, settings)

        if not auth_header.lower().startswith(BEARER_PREFIX):
            return self._reject(request, TokenInvalid("Malformed Authorization header"))

        claims = decode_token(settings, auth_header[len(BEARER_PREFIX):].strip())
        if claims is None:
            return self._reject(request, TokenInvalid("Invalid or expired token"))

        user_id = claims["user_id"]
        record = await store.touch(user_id)
        if record is None:
            return self._reject(request, SessionExpired("Session expired, log in again"))

        request.state.identity = Identity(user_id=user_id, role=claims.get("role"), email=claims.get("email"))
        return await call_next(request)

    def _reject(self, request: Request, exc):
        logger.warning("identity.rejected", extra={"code": exc.code, "path": request.url.path,
                                                   "method": request.method})
        return domain_error_response(exc)

    @staticmethod
    def _maybe_set_anonymous_cookie(request: Request, response, settings):
        new_key = getattr(request.state, "new_anonymous_key", None)
        if new_key:
            response.set_cookie(
                key=settings.ANON_COOKIE_NAME,
                value=new_key,
                httponly=True,
                secure=settings.ENV in ("prod", "staging"),
                samesite="Lax",
                path="/",
                max_age=settings.ANON_COOKIE_MAX_AGE,
            )
        return response
