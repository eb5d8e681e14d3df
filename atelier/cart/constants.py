from atelier.common.logging_setup import get_logger

logger = get_logger("atelier.cart")
