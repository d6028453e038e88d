import logging
from typing import Optional, Dict, Any, Callable

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')

logger = logging.getLogger(__name__)

# Receives one system_logs row per call; wired to the active backend at startup
LogSink = Callable[[Dict[str, Any]], None]
_log_sink: Optional[LogSink] = None


def set_log_sink(sink: Optional[LogSink]) -> None:
    """Route database log rows to the given writer (None disables it)."""
    global _log_sink
    _log_sink = sink


async def log_to_database(source: str,
                          log_type: str,
                          message: str,
                          user_id: Optional[str] = None,
                          details: Optional[Dict[str, Any]] = None) -> None:
    """
    Log a message to both console and database.

    Args:
        source: Log source (e.g., 'gemini', 'pipeline', 'ledger', 'stripe')
        log_type: Log type (e.g., 'info', 'warning', 'error')
        message: Log message
        user_id: Optional user ID if related to a user action
        details: Optional additional details
    """
    try:
        # Log to console
        if log_type == "error":
            logger.error(f"[{source}] {message}")
        elif log_type == "warning":
            logger.warning(f"[{source}] {message}")
        else:
            logger.info(f"[{source}] {message}")

        if _log_sink is None:
            return

        log_data = {
            "source": source,
            "log_type": log_type,
            "message": message,
            "details": details or {}
        }

        if user_id:
            log_data["user_id"] = str(user_id)

        _log_sink(log_data)

    except Exception as e:
        logger.error(f"Failed to log to database: {str(e)}")


def get_logger(name: str):
    """Get a logger instance with the given name."""
    return logging.getLogger(name)
