"""Default notification collaborator: user feedback goes to the log."""

import structlog

from agentdesk.services.clients.base import Notifier

logger = structlog.get_logger(__name__)


class LogNotifier(Notifier):
    """Notifier for headless consoles. Records nothing, only logs."""

    def report_error(self, message: str) -> None:
        logger.warning("user_notified_error", message=message)

    def report_success(self, message: str) -> None:
        logger.info("user_notified_success", message=message)
