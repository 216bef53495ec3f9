"""
Chat API Endpoint.

Hands inbound chat messages (e.g. from a WhatsApp bridge) to the
scheduling engine and returns the replies to send back.
"""

import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, status
from pydantic import BaseModel, Field

from app.core.scheduling.engine import InboundMessage, get_scheduling_engine
from app.core.session import get_session_manager

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/chat", tags=["Chat"])


class ChatRequest(BaseModel):
    """Chat message request."""

    user_id: str = Field(
        ...,
        min_length=1,
        max_length=128,
        description="Chat user identifier (usually the phone number)",
        examples=["5215512345678"],
    )
    message: str = Field(
        ...,
        min_length=1,
        max_length=2000,
        description="User's message",
        examples=["Quiero agendar una cita"],
    )
    received_at: Optional[datetime] = Field(
        default=None,
        description="When the transport received the message (defaults to now)",
    )


class ChatResponse(BaseModel):
    """Chat response."""

    messages: list[str] = Field(
        default_factory=list,
        description="Replies to send, in order",
    )
    handled: bool = Field(
        ...,
        description="False when the scheduling assistant did not handle the message",
    )
    step: Optional[str] = Field(
        default=None,
        description="Current booking step, if a booking is in progress",
    )
    booking_id: Optional[str] = Field(
        default=None,
        description="Calendar event ID if an appointment was created",
    )
    event_link: Optional[str] = Field(
        default=None,
        description="Link to the created calendar event",
    )


class SessionResponse(BaseModel):
    """Stored conversation state."""

    user_id: str
    step: Optional[str] = None
    data: Optional[dict] = None
    availability: Optional[dict] = None


@router.post(
    "",
    response_model=ChatResponse,
    status_code=status.HTTP_200_OK,
    summary="Send a chat message",
    description="Send a message to the scheduling assistant and get its replies.",
)
async def chat(request: ChatRequest) -> ChatResponse:
    """
    Process a chat message.

    The engine never raises: failures come back as a user-facing
    apology in `messages`.
    """
    engine = get_scheduling_engine()
    response = await engine.process(
        InboundMessage(
            user_id=request.user_id,
            text=request.message,
            received_at=request.received_at,
        )
    )

    return ChatResponse(
        messages=response.messages,
        handled=response.handled,
        step=response.step.value if response.step else None,
        booking_id=response.booking_id,
        event_link=response.event_link,
    )


@router.get(
    "/session/{user_id}",
    response_model=SessionResponse,
    summary="Get conversation state",
    description="Retrieve the booking in progress for a user, if any.",
)
async def get_session(user_id: str) -> SessionResponse:
    """Get a user's conversation state."""
    state = await get_session_manager().get(user_id)

    return SessionResponse(
        user_id=user_id,
        step=state.step.value if state.step else None,
        data=state.scheduling.data.to_dict() if state.scheduling else None,
        availability=state.availability.to_dict() if state.availability else None,
    )


@router.delete(
    "/session/{user_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Reset conversation state",
    description="Drop the booking in progress and the availability cursor.",
)
async def reset_session(user_id: str) -> None:
    """Reset a user's conversation state."""
    await get_scheduling_engine().reset_session(user_id)
