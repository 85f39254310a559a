from pydantic import BaseModel, Field
from uuid import UUID
from datetime import datetime
from typing import Any, Dict, List, Optional


class MessageData(BaseModel):
    id: str
    conversation_id: str
    sender_id: str
    receiver_id: str
    content: str = ""
    offer_id: Optional[str] = None
    read: bool = False
    created_at: datetime


class AttachmentData(BaseModel):
    id: str
    message_id: str
    file_name: str
    file_type: str
    file_size: int
    storage_path: str
    url: str


class AttachmentUpload(BaseModel):
    file_name: str
    file_type: str = "application/octet-stream"
    data: bytes

    @property
    def size(self) -> int:
        return len(self.data)


class FailedAttachment(BaseModel):
    file_name: str
    reason: str


# Send message
class SendMessageResponseModel(BaseModel):
    message: MessageData
    attachments: List[AttachmentData] = Field(default_factory=list)
    failed_attachments: List[FailedAttachment] = Field(default_factory=list)


# Direct conversations
class CreateDirectConversationModel(BaseModel):
    receiver_id: UUID


class CreateDirectConversationResponseModel(BaseModel):
    conversation_id: str


# Conversation list
class LastMessageData(BaseModel):
    content: str
    created_at: datetime
    sender_id: Optional[str] = None
    read: Optional[bool] = None
    offer_id: Optional[str] = None


class ConversationSummary(BaseModel):
    id: str
    other_user_id: str
    other_profile: Optional[Dict[str, Any]] = None
    last_message: Optional[LastMessageData] = None
    unread_count: int = 0
    created_at: datetime


class GetConversationsResponseModel(BaseModel):
    conversations: List[ConversationSummary]


# Messages
class GetMessagesResponseModel(BaseModel):
    messages: List[MessageData]
    attachments: Dict[str, List[AttachmentData]] = Field(default_factory=dict)


class MarkReadResponseModel(BaseModel):
    updated: int


class UnreadCountsResponseModel(BaseModel):
    total: int
    by_conversation: Dict[str, int]


# Annotations
class ChatMetadataResponseModel(BaseModel):
    starred: List[str]
    archived: List[str]


class AnnotationResponseModel(BaseModel):
    conversation_id: str
    starred: Optional[bool] = None
    archived: Optional[bool] = None
