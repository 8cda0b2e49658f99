"""Translation of failures into response triples."""

import logging

from .exceptions import BridgeError
from .models import TEXT_MEDIA_TYPE, ResponseTriple

logger = logging.getLogger(__name__)


def to_triple(exc: BaseException) -> ResponseTriple:
    """Map an exception to (status, content type, body).

    Bridge errors keep their status (400 for user, not-found, ambiguous
    and style errors); anything else is a 500 carrying the exception
    message. Bodies are plain text.
    """
    if isinstance(exc, BridgeError):
        if exc.status_code >= 500:
            logger.error(f"Request failed: {exc.message}")
        else:
            logger.debug(f"Request rejected: {exc.message}")
        return ResponseTriple(exc.status_code, TEXT_MEDIA_TYPE, exc.message)

    logger.error(f"Unexpected failure: {exc}", exc_info=exc)
    return ResponseTriple(500, TEXT_MEDIA_TYPE, str(exc) or type(exc).__name__)
