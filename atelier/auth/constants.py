from atelier.common.logging_setup import get_logger

logger = get_logger("atelier.auth")

BEARER_PREFIX = "bearer "

PASSWORD_MIN_LENGTH = 8

