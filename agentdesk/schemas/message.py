"""Message schema and payload transforms.

Both the REST page path and the realtime push path build messages through
``message_from_payload`` so sender classification has one canonical rule.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, field_validator, model_validator

from agentdesk.core.config import settings


class SenderCategory(str, Enum):
    SELF = "self"
    COUNTERPART = "counterpart"
    SYSTEM = "system"


def parse_timestamp(value: str | datetime) -> datetime:
    """Parse an ISO timestamp; naive values are treated as UTC."""
    if isinstance(value, str):
        value = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


def format_display_time(timestamp: datetime) -> str:
    """Locale-independent ``HH:MM`` in the machine's local timezone."""
    return timestamp.astimezone().strftime("%H:%M")


class Message(BaseModel):
    """One chat line. Immutable once created."""

    model_config = ConfigDict(frozen=True)

    id: int | str
    session_id: int | str | None = None
    sender_category: SenderCategory
    body: str
    server_timestamp: datetime
    display_time: str = ""
    sender_name: str = settings.default_sender_name
    sender_type: str = "system"
    sender_image: str | None = None

    @model_validator(mode="before")
    @classmethod
    def _derive_display_time(cls, data: Any) -> Any:
        if isinstance(data, dict) and data.get("server_timestamp") is not None:
            timestamp = parse_timestamp(data["server_timestamp"])
            data = {**data, "server_timestamp": timestamp}
            if not data.get("display_time"):
                data["display_time"] = format_display_time(timestamp)
        return data

    @field_validator("server_timestamp")
    @classmethod
    def _aware(cls, value: datetime) -> datetime:
        return parse_timestamp(value)


def classify_sender(
    payload: dict[str, Any], local_user_id: int | str | None
) -> SenderCategory:
    """Derive the sender category of a raw backend message.

    ``current_agent`` is always self. A legacy ``agent`` sender is self only
    when its id matches the signed-in agent. Missing or ``system`` sender
    types are system lines; everyone else is the counterpart.
    """
    sender_type = payload.get("sender_type")
    if sender_type == "current_agent":
        return SenderCategory.SELF
    if sender_type == "agent" and local_user_id is not None:
        sender_id = payload.get("sender_id", payload.get("sys_user_id"))
        if sender_id is not None and str(sender_id) == str(local_user_id):
            return SenderCategory.SELF
    if sender_type in (None, "", "system"):
        return SenderCategory.SYSTEM
    return SenderCategory.COUNTERPART


def message_from_payload(
    payload: dict[str, Any],
    *,
    session_id: int | str | None,
    local_user_id: int | str | None,
    fallback_id: str | None = None,
) -> Message:
    """Transform a backend message dict (REST row or socket push)."""
    message_id = payload.get("chat_id")
    if message_id is None:
        if fallback_id is None:
            raise ValueError("message payload has no chat_id")
        message_id = fallback_id
    created_at = payload.get("chat_created_at") or datetime.now(timezone.utc)
    return Message(
        id=message_id,
        session_id=session_id,
        sender_category=classify_sender(payload, local_user_id),
        body=payload.get("chat_body") or "",
        server_timestamp=created_at,
        sender_name=payload.get("sender_name") or settings.default_sender_name,
        sender_type=payload.get("sender_type") or "system",
        sender_image=payload.get("sender_image"),
    )


def messages_from_page(
    payloads: list[dict[str, Any]],
    *,
    session_id: int | str,
    local_user_id: int | str | None,
    fallback_prefix: str = "head",
) -> list[Message]:
    """Transform a REST page. Rows without ``chat_id`` get positional ids.

    Positional ids are scoped to the page boundary (``fallback_prefix``) so
    two different pages never collide, but they are not stable across
    refetches and only dedup reliably within one in-memory run.
    """
    return [
        message_from_payload(
            payload,
            session_id=session_id,
            local_user_id=local_user_id,
            fallback_id=f"pos-{fallback_prefix}-{index}",
        )
        for index, payload in enumerate(payloads)
    ]


def system_message(body: str, session_id: int | str | None = None) -> Message:
    """Synthetic local-only system line (e.g. the chat-ended banner)."""
    return Message(
        id=f"local-{uuid.uuid4().hex}",
        session_id=session_id,
        sender_category=SenderCategory.SYSTEM,
        body=body,
        server_timestamp=datetime.now(timezone.utc),
        sender_type="system",
    )
