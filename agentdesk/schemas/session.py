"""Session, department and agent identity schemas."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from agentdesk.core.config import settings
from agentdesk.schemas.message import Message


class SessionStatus(str, Enum):
    QUEUED = "queued"
    ACTIVE = "active"
    TRANSFERRED = "transferred"
    ENDED = "ended"


class Session(BaseModel):
    """A customer's chat group as seen by one agent."""

    model_config = ConfigDict(from_attributes=True)

    session_id: int | str
    chat_group_id: int | str
    department: str = Field(default="", validate_default=True)
    assigned_agent_id: int | str | None = None
    is_accepted: bool = False
    status: SessionStatus = SessionStatus.QUEUED
    name: str | None = None
    profile_image: str | None = None

    @property
    def room_key(self) -> str:
        return str(self.chat_group_id)

    @classmethod
    def from_customer(
        cls,
        customer: dict[str, Any],
        status: SessionStatus,
        department: str | None = None,
        accepted: bool | None = None,
    ) -> "Session":
        """Build a session from a backend customer record.

        ``is_accepted`` comes from the record's ``isAccepted`` flag; ``accepted``
        is only the fallback when the record omits it.
        """
        assigned = customer.get("sys_user_id")
        return cls(
            session_id=customer["id"],
            chat_group_id=customer["chat_group_id"],
            department=department or customer.get("department"),
            assigned_agent_id=assigned,
            is_accepted=bool(customer.get("isAccepted", accepted or False)),
            status=status,
            name=customer.get("name"),
            profile_image=customer.get("profile_image") or customer.get("prof_picture"),
        )

    @classmethod
    def from_group(cls, group: dict[str, Any], status: SessionStatus) -> "Session":
        """Build a session from a ``{customer, department}`` chat group row.

        Rows of the agent's own chat list are accepted unless they say otherwise.
        """
        return cls.from_customer(
            group.get("customer") or {},
            status=status,
            department=group.get("department"),
            accepted=status is SessionStatus.ACTIVE,
        )


class Department(BaseModel):
    """Department catalog entry. Owned by department administration."""

    model_config = ConfigDict(populate_by_name=True)

    dept_id: int | str
    name: str = Field(alias="dept_name")
    is_active: bool = Field(default=True, alias="dept_is_active")


class EndedSession(BaseModel):
    """Archived engagement kept for UI history after the agent ends a chat."""

    session: Session
    messages: list[Message]
    ended_at: datetime


@dataclass(frozen=True)
class AcceptResult:
    """Outcome of ``acceptSession``."""

    success: bool
    assigned_agent_id: int | str | None = None


@dataclass(frozen=True)
class AgentIdentity:
    """The signed-in agent. ``user_id`` is None before login completes."""

    user_id: int | str | None
    user_type: str = "agent"
