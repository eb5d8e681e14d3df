from fastapi import FastAPI, Request, status
from starlette.exceptions import HTTPException
from fastapi.exceptions import RequestValidationError
from atelier.common import errors
from atelier.common.constants import request_id_ctx
from atelier.common.logging_setup import get_logger
from atelier.common.utils import build_error, json_error


logger = get_logger("atelier.common")

# the only place where domain codes meet transport status codes
DOMAIN_STATUS_MAP = {
    errors.ValidationFailed: status.HTTP_400_BAD_REQUEST,

    errors.NotAuthenticated: status.HTTP_401_UNAUTHORIZED,
    errors.TokenInvalid: status.HTTP_401_UNAUTHORIZED,
    errors.SessionExpired: status.HTTP_401_UNAUTHORIZED,
    errors.InvalidCredentials: status.HTTP_401_UNAUTHORIZED,
    errors.Forbidden: status.HTTP_403_FORBIDDEN,

    errors.VariationNotFound: status.HTTP_404_NOT_FOUND,
    errors.ProductNotFound: status.HTTP_404_NOT_FOUND,
    errors.CartLineNotFound: status.HTTP_404_NOT_FOUND,
    errors.OrderNotFound: status.HTTP_404_NOT_FOUND,
    errors.UserNotFound: status.HTTP_404_NOT_FOUND,

    errors.InsufficientStock: status.HTTP_409_CONFLICT,
    errors.EmptyCart: status.HTTP_409_CONFLICT,
    errors.LineNotInCart: status.HTTP_409_CONFLICT,
    errors.ProductUnavailable: status.HTTP_409_CONFLICT,
    errors.InvalidStatusTransition: status.HTTP_409_CONFLICT,
    errors.EmailTaken: status.HTTP_409_CONFLICT,
    errors.DuplicateSlug: status.HTTP_409_CONFLICT,

    errors.CheckoutTimeout: status.HTTP_503_SERVICE_UNAVAILABLE,
}

AUTH_HEADERS = {"WWW-Authenticate": "Bearer"}


def status_for(exc: errors.DomainError) -> int:
    for klass in type(exc).__mro__:
        if klass in DOMAIN_STATUS_MAP:
            return DOMAIN_STATUS_MAP[klass]
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def domain_error_response(exc: errors.DomainError):
    rid = request_id_ctx.get(None)
    status_code = status_for(exc)
    details = {"message": exc.message}
    if exc.details is not None:
        details["context"] = exc.details
    headers = AUTH_HEADERS if status_code == status.HTTP_401_UNAUTHORIZED else None
    payload = build_error(code=exc.code, details=details, request_id=rid)
    return json_error(payload, status_code=status_code, headers=headers)


async def domain_exception_handler(request: Request, exc: errors.DomainError):
    rid = request_id_ctx.get(None)
    logger.info(
        "domain.rejected",
        extra={
            "code": exc.code,
            "path": request.url.path,
            "method": request.method,
            "request_id": rid,
        },
    )
    return domain_error_response(exc)


async def fallback_handler(request: Request, exc: Exception):

    rid = request_id_ctx.get(None)
    body = {"message": "Internal Server Error"}

    logger.error(
        "unexpected.exception",
        extra={
            "path": request.url.path,
            "method": request.method,
            "request_id": rid,
        },
        exc_info=exc,
    )

    payload = build_error(code="SERVER_ERROR", details=body, request_id=rid)
    return json_error(payload, status_code=status.HTTP_500_INTERNAL_SERVER_ERROR)


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    rid = request_id_ctx.get(None)
    logger.warning(
        "request.validation_failed",
        extra={
            "errors": exc.errors(),
            "path": request.url.path,
            "request_id": rid,
        },
    )

    fields = [".".join(str(p) for p in e.get("loc", ())) for e in exc.errors()]
    payload = build_error(code="VALIDATION_ERROR",
                          details={"message": "invalid request", "fields": fields}, request_id=rid)
    return json_error(payload, status_code=status.HTTP_400_BAD_REQUEST)


async def http_exception_handler(request: Request, exc: HTTPException):

    rid = request_id_ctx.get(None)

    payload = build_error(code=f"HTTP_{exc.status_code}", details={"message": exc.detail}, request_id=rid)
    return json_error(payload, status_code=exc.status_code, headers=getattr(exc, "headers", None))


def register_all_exceptions(app: FastAPI):

    app.add_exception_handler(
        Exception,  # anything unhandled ends up as a logged 500
        fallback_handler
    )

    app.add_exception_handler(
        errors.DomainError,
        domain_exception_handler
    )

    app.add_exception_handler(
        RequestValidationError,
        validation_exception_handler
    )

    app.add_exception_handler(
        HTTPException,
        http_exception_handler
    )
