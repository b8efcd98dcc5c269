from pydantic import BaseModel
from uuid import UUID
from datetime import datetime
from typing import Optional

from unimatch.models.conversation import MessageType
from unimatch.schemas.user import UserSummary


class ReadReceipt(BaseModel):
    user_id: UUID
    read_at: datetime


class MessageResponse(BaseModel):
    id: UUID
    conversation_id: UUID
    seq: int
    sender_id: UUID
    content: str
    message_type: MessageType
    created_at: datetime
    read_by: list[ReadReceipt] = []


class MessageCreate(BaseModel):
    content: str
    message_type: str = MessageType.TEXT.value


class MessagePage(BaseModel):
    messages: list[MessageResponse]
    has_more: bool


class LastMessage(BaseModel):
    content: str
    sender_id: UUID
    timestamp: datetime


class ConversationResponse(BaseModel):
    id: UUID
    participants: list[UUID]
    is_active: bool
    last_message: Optional[LastMessage] = None
    created_at: datetime

    model_config = {"from_attributes": True}


class ConversationListItem(BaseModel):
    id: UUID
    other_user: Optional[UserSummary]
    last_message: Optional[LastMessage] = None
    unread_count: int = 0
    updated_at: datetime


class MarkReadResponse(BaseModel):
    marked: int
