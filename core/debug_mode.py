"""
Debug Mode Control

Debug and diagnostic endpoints only run when ENABLE_DEBUG_ENDPOINTS=true.
While disabled they answer 404 so their existence is not revealed.
"""

from core.config import Settings
from core.errors import DebugModeDisabledError
from core.logger import get_logger

logger = get_logger(__name__)


def is_debug_mode_enabled(settings: Settings) -> bool:
    return settings.ENABLE_DEBUG_ENDPOINTS


def require_debug_mode(settings: Settings) -> None:
    """
    Require debug mode to be enabled.

    Raises:
        DebugModeDisabledError: If debug endpoints are disabled
    """
    if not is_debug_mode_enabled(settings):
        logger.warning("Attempted to access debug endpoint while disabled")
        raise DebugModeDisabledError()


def log_debug_mode_status(settings: Settings) -> None:
    if is_debug_mode_enabled(settings):
        logger.warning("DEBUG ENDPOINTS ENABLED - set ENABLE_DEBUG_ENDPOINTS=false in production")
    else:
        logger.info("Debug endpoints disabled")
