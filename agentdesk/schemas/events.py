"""Realtime event names and the closed set of inbound event variants.

Raw Socket.IO payloads are converted once, at the transport edge, into one
of the tagged variants below. The reconciler dispatches on ``kind`` and
never inspects payload shapes itself.
"""

from __future__ import annotations

from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter


class SocketEvent(str, Enum):
    # Outbound intents
    SEND_MESSAGE = "sendMessage"
    JOIN_CHAT_GROUP = "joinChatGroup"
    LEAVE_ROOM = "leaveRoom"
    ACCEPT_CHAT = "acceptChat"

    # Inbound broadcasts
    RECEIVE_MESSAGE = "receiveMessage"
    UPDATE_CHAT_GROUPS = "updateChatGroups"
    CUSTOMER_LIST_UPDATE = "customerListUpdate"
    USER_JOINED = "userJoined"
    USER_LEFT = "userLeft"
    MESSAGE_DELIVERED = "messageDelivered"
    MESSAGE_ERROR = "messageError"


INBOUND_EVENTS: tuple[SocketEvent, ...] = (
    SocketEvent.RECEIVE_MESSAGE,
    SocketEvent.UPDATE_CHAT_GROUPS,
    SocketEvent.CUSTOMER_LIST_UPDATE,
    SocketEvent.ACCEPT_CHAT,
    SocketEvent.USER_JOINED,
    SocketEvent.USER_LEFT,
    SocketEvent.MESSAGE_DELIVERED,
    SocketEvent.MESSAGE_ERROR,
)

MOVE_TO_TOP = "move_to_top"


class MessageEvent(BaseModel):
    """A chat line broadcast to a room."""

    kind: Literal["message"] = "message"
    payload: dict[str, Any]

    @property
    def chat_group_id(self) -> Any:
        return self.payload.get("chat_group_id")


class GroupListChangedEvent(BaseModel):
    """Coarse "something changed, refetch the group list"."""

    kind: Literal["group_list_changed"] = "group_list_changed"


class MoveToTopEvent(BaseModel):
    """One session changed position or department."""

    kind: Literal["move_to_top"] = "move_to_top"
    customer: dict[str, Any]


class RoomMembershipEvent(BaseModel):
    kind: Literal["room_membership"] = "room_membership"
    joined: bool
    chat_group_id: Any = None
    user_type: str | None = None
    user_id: Any = None


class AcceptBroadcastEvent(BaseModel):
    """Some agent accepted a queued session."""

    kind: Literal["accept_broadcast"] = "accept_broadcast"
    chat_group_id: Any
    agent_id: Any = None


class DeliveryEvent(BaseModel):
    """Server acknowledgement (or rejection) of a sent message."""

    kind: Literal["delivery"] = "delivery"
    delivered: bool
    chat_id: Any = None
    error: str | None = None


InboundEvent = Annotated[
    Union[
        MessageEvent,
        GroupListChangedEvent,
        MoveToTopEvent,
        RoomMembershipEvent,
        AcceptBroadcastEvent,
        DeliveryEvent,
    ],
    Field(discriminator="kind"),
]

_inbound_adapter: TypeAdapter[InboundEvent] = TypeAdapter(InboundEvent)


def parse_inbound(event: str, data: Any) -> InboundEvent | None:
    """Convert a raw transport event into its tagged variant.

    Returns None for events that carry nothing this engine acts on
    (e.g. customer list updates of an unknown type).
    """
    original = data
    data = data if isinstance(data, dict) else {}
    name = SocketEvent(event)

    if name is SocketEvent.RECEIVE_MESSAGE:
        raw: dict[str, Any] = {"kind": "message", "payload": data}
    elif name is SocketEvent.UPDATE_CHAT_GROUPS:
        raw = {"kind": "group_list_changed"}
    elif name is SocketEvent.CUSTOMER_LIST_UPDATE:
        if data.get("type") != MOVE_TO_TOP:
            return None
        customer = (data.get("data") or {}).get("customer")
        if not customer:
            return None
        raw = {"kind": "move_to_top", "customer": customer}
    elif name is SocketEvent.ACCEPT_CHAT:
        raw = {
            "kind": "accept_broadcast",
            "chat_group_id": data.get("chatGroupId"),
            "agent_id": data.get("agentId"),
        }
    elif name in (SocketEvent.USER_JOINED, SocketEvent.USER_LEFT):
        raw = {
            "kind": "room_membership",
            "joined": name is SocketEvent.USER_JOINED,
            "chat_group_id": data.get("chatGroupId"),
            "user_type": data.get("userType"),
            "user_id": data.get("userId"),
        }
    elif name is SocketEvent.MESSAGE_DELIVERED:
        raw = {"kind": "delivery", "delivered": True, "chat_id": data.get("chat_id")}
    elif name is SocketEvent.MESSAGE_ERROR:
        if isinstance(original, str):
            error = original
        else:
            error = str(data.get("message") or data.get("error") or "Message failed")
        raw = {"kind": "delivery", "delivered": False, "error": error}
    else:
        return None

    return _inbound_adapter.validate_python(raw)
