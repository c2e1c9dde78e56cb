"""Capability names and a static capability set.

Names match the backend privilege keys returned with the agent's role.
"""

from __future__ import annotations

from typing import Iterable

from agentdesk.services.clients.base import PermissionChecker


class Capability:
    MESSAGE = "priv_can_message"
    END_CHAT = "priv_can_end_chat"
    TRANSFER = "priv_can_transfer"
    ACCEPT_CHAT = "priv_can_accept_chat"


class StaticPermissions(PermissionChecker):
    """Capabilities fixed at login time."""

    def __init__(self, capabilities: Iterable[str] = ()) -> None:
        self._capabilities = frozenset(capabilities)

    @classmethod
    def from_privileges(cls, privileges: dict[str, bool]) -> "StaticPermissions":
        """Build from the backend's ``{priv_name: bool}`` role payload."""
        return cls(name for name, granted in privileges.items() if granted)

    def has_capability(self, name: str) -> bool:
        return name in self._capabilities
