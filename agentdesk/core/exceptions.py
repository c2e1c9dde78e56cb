"""Custom exception classes for structured error handling.

StaleFocus and Duplicate outcomes are not exceptions: the store and
reconciler absorb both silently.
"""

from typing import Any


class AgentDeskError(Exception):
    """Base exception for all agentdesk errors."""

    def __init__(self, code: str, message: str) -> None:
        self.code = code
        self.message = message
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {"error": {"code": self.code, "message": self.message}}


class CapabilityDeniedError(AgentDeskError):
    def __init__(self, action: str = "perform this action") -> None:
        super().__init__(
            code="CAPABILITY_DENIED",
            message=f"You do not have permission to {action}",
        )


class NetworkFailureError(AgentDeskError):
    def __init__(self, message: str = "Network request failed") -> None:
        super().__init__(code="NETWORK_FAILURE", message=message)


class NoFocusedSessionError(AgentDeskError):
    def __init__(self, message: str = "No conversation is selected") -> None:
        super().__init__(code="NO_FOCUSED_SESSION", message=message)


class InvalidTransferError(AgentDeskError):
    def __init__(self, message: str = "Invalid transfer destination") -> None:
        super().__init__(code="INVALID_TRANSFER", message=message)


class AcceptRejectedError(AgentDeskError):
    def __init__(self, message: str = "Chat could not be accepted") -> None:
        super().__init__(code="ACCEPT_REJECTED", message=message)


class TransportNotConnectedError(AgentDeskError):
    def __init__(self, message: str = "Realtime connection is not open") -> None:
        super().__init__(code="TRANSPORT_NOT_CONNECTED", message=message)
