from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.ext.asyncio import AsyncSession
from atelier.auth import services
from atelier.auth.constants import logger
from atelier.auth.dependencies import get_session_store, get_settings, require_user, signup_validation
from atelier.auth.models import Identity, SignIn, SignupIn, SyncIn
from atelier.cache.sessions import SessionStore
from atelier.common.errors import SessionExpired
from atelier.common.utils import success_response
from atelier.config.settings import Settings
from atelier.db.dependencies import get_session

auth_router = APIRouter()


@auth_router.post("/register", status_code=status.HTTP_201_CREATED)
async def register_user(payload: SignupIn = Depends(signup_validation), settings: Settings = Depends(get_settings),
                        session: AsyncSession = Depends(get_session)):

    logger.info("signup.attempt", extra={"email": payload.email})

    user = await services.create_user(session, payload, settings)
    await session.commit()

    logger.info("signup.success", extra={"user_id": user.id})
    return success_response({"message": "User created successfully.", "user": services.serialize_user(user)}, 201)


@auth_router.post("/login")
async def login_user(request: Request, payload: SignIn, settings: Settings = Depends(get_settings),
                     store: SessionStore = Depends(get_session_store), session: AsyncSession = Depends(get_session)):

    logger.info("login.attempt", extra={"email": payload.email})

    anonymous_key = request.cookies.get(settings.ANON_COOKIE_NAME)
    token, user, merge = await services.login(session, store, payload, settings,
                                              anonymous_key=anonymous_key,
                                              user_agent=request.headers.get("user-agent"))

    resp = {
        "access_token": token,
        "token_type": "bearer",
        "expires_in": settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        "user": services.serialize_user(user),
        "cart_merge": merge.as_dict(),
    }
    response = success_response(resp, 200)
    # the anonymous cart is gone (merged or converted), so is its key
    if anonymous_key:
        response.delete_cookie(settings.ANON_COOKIE_NAME, path="/")

    logger.info("login.success", extra={"user_id": user.id})
    return response


@auth_router.post("/logout")
async def logout(identity: Identity = Depends(require_user), store: SessionStore = Depends(get_session_store)):

    logger.info("logout.attempt", extra={"user_id": identity.user_id})
    await services.logout(store, identity.user_id)
    logger.info("logout.success", extra={"user_id": identity.user_id})
    return success_response({"message": "Logged out successfully."}, 200)


@auth_router.get("/me")
async def me(identity: Identity = Depends(require_user), store: SessionStore = Depends(get_session_store),
             session: AsyncSession = Depends(get_session)):
    user = await services.get_profile(session, identity.user_id)
    record = await store.get(identity.user_id)
    return success_response({"user": services.serialize_user(user), "session": record})


@auth_router.post("/sync")
async def sync(payload: SyncIn, identity: Identity = Depends(require_user),
               store: SessionStore = Depends(get_session_store)):
    record = await services.sync_session(store, identity.user_id, payload.client_data)
    if record is None:
        raise SessionExpired("Session expired, log in again")
    return success_response({"session": record})
