import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, UploadFile
from fastapi.concurrency import run_in_threadpool

from skillswap.core.dependencies import (
    get_attachment_store,
    get_chat_annotations,
    get_conversation_directory,
    get_current_user_id,
    get_message_log,
    get_profile_cache,
)
from skillswap.core.errors import Unauthorized
from skillswap.pairing.service import ConversationDirectory
from skillswap.utils.profiles import ProfileCache
from .annotations import ChatAnnotations
from .attachments import AttachmentStore
from .messages import MessageLog
from .schemas import (
    AnnotationResponseModel,
    AttachmentUpload,
    ChatMetadataResponseModel,
    CreateDirectConversationModel,
    CreateDirectConversationResponseModel,
    GetConversationsResponseModel,
    GetMessagesResponseModel,
    MarkReadResponseModel,
    MessageData,
    SendMessageResponseModel,
    UnreadCountsResponseModel,
)

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post(
    "/conversations/direct",
    response_model=CreateDirectConversationResponseModel,
    status_code=200,
)
def get_or_create_direct_conversation(
    data: CreateDirectConversationModel,
    user_id: str = Depends(get_current_user_id),
    conversations: ConversationDirectory = Depends(get_conversation_directory),
):
    """
    Get or create the 1-on-1 conversation with another user.

    Both participants calling this (in either order, even at the same time)
    end up with the same conversation id.

    **Input**
    - `receiver_id`: UUID of the other participant

    **Returns**
    - `conversation_id`: UUID of the conversation

    **Errors**
    - 401: Unauthorized
    - 422: Trying to open a conversation with yourself
    - 503: Database error
    """
    conversation_id = conversations.get_or_create(user_id, str(data.receiver_id))
    return {"conversation_id": conversation_id}


@router.get(
    "/conversations",
    response_model=GetConversationsResponseModel,
    status_code=200,
)
def get_conversations(
    user_id: str = Depends(get_current_user_id),
    messages: MessageLog = Depends(get_message_log),
    profiles: ProfileCache = Depends(get_profile_cache),
):
    """
    Retrieve the inbox of the authenticated user.

    Each entry carries the other participant (with cached profile), the last
    message and the unread count. Entries are sorted by latest activity,
    newest first.
    """
    return {"conversations": messages.conversation_summaries(user_id, profiles)}


@router.get(
    "/messages/{conversation_id}",
    response_model=GetMessagesResponseModel,
    status_code=200,
)
def get_messages(
    conversation_id: str,
    user_id: str = Depends(get_current_user_id),
    messages: MessageLog = Depends(get_message_log),
    attachments: AttachmentStore = Depends(get_attachment_store),
):
    """
    Retrieve all messages for a conversation.

    Messages are ordered by `(created_at, id)` ascending, so two messages
    with the same timestamp always come back in the same order. Attachments
    are returned keyed by message id.

    **Errors**
    - 403: User is not a member of the conversation
    - 404: Conversation does not exist
    - 503: Database error
    """
    messages.conversations.require_participant(conversation_id, user_id)
    rows = messages.list(conversation_id)

    return {
        "messages": rows,
        "attachments": attachments.for_messages([row["id"] for row in rows]),
    }


@router.post(
    "/messages",
    response_model=SendMessageResponseModel,
    status_code=201,
)
async def send_message(
    conversation_id: str = Form(...),
    content: str = Form(""),
    files: Optional[List[UploadFile]] = File(None),
    user_id: str = Depends(get_current_user_id),
    messages: MessageLog = Depends(get_message_log),
):
    """
    Send a message, optionally with attachments, to an existing conversation.

    The message is written first. Attachments are uploaded afterwards, one
    by one; an upload that fails is listed in `failed_attachments` and does
    not undo the message.

    **Errors**
    - 403: User is not a member of the conversation
    - 404: Conversation not found
    - 422: Empty message
    - 503: Database error (the client may retry)
    """
    conversation = await run_in_threadpool(
        messages.conversations.require_participant, conversation_id, user_id
    )
    receiver_id = messages.conversations.other_participant(conversation, user_id)

    uploads = [
        AttachmentUpload(
            file_name=upload.filename or "file",
            file_type=upload.content_type or "application/octet-stream",
            data=await upload.read(),
        )
        for upload in files or []
    ]

    return await run_in_threadpool(
        messages.send, conversation_id, user_id, receiver_id, content, uploads
    )


@router.post(
    "/conversations/{conversation_id}/read",
    response_model=MarkReadResponseModel,
    status_code=200,
)
def mark_conversation_as_read(
    conversation_id: str,
    user_id: str = Depends(get_current_user_id),
    messages: MessageLog = Depends(get_message_log),
):
    """Mark every message addressed to the caller in this conversation as read."""
    messages.conversations.require_participant(conversation_id, user_id)
    return {"updated": messages.mark_read(conversation_id, user_id)}


@router.post("/messages/{message_id}/read", response_model=MessageData, status_code=200)
def mark_message_as_read(
    message_id: str,
    user_id: str = Depends(get_current_user_id),
    messages: MessageLog = Depends(get_message_log),
):
    return messages.mark_message_read(message_id, user_id)


@router.get("/unread", response_model=UnreadCountsResponseModel, status_code=200)
def get_unread_counts(
    user_id: str = Depends(get_current_user_id),
    messages: MessageLog = Depends(get_message_log),
):
    return messages.unread_counts(user_id)


@router.delete("/attachments/{attachment_id}", status_code=204)
def delete_attachment(
    attachment_id: str,
    user_id: str = Depends(get_current_user_id),
    messages: MessageLog = Depends(get_message_log),
    attachments: AttachmentStore = Depends(get_attachment_store),
):
    """Only the sender of the owning message may remove an attachment."""
    attachment = attachments.get(attachment_id)
    message = messages.get(attachment["message_id"])

    if message["sender_id"] != user_id:
        raise Unauthorized("Only the sender can remove this attachment")

    attachments.delete(attachment_id)


# Per-user chat annotations


@router.get("/metadata", response_model=ChatMetadataResponseModel, status_code=200)
def get_chat_metadata(
    user_id: str = Depends(get_current_user_id),
    annotations: ChatAnnotations = Depends(get_chat_annotations),
):
    meta = annotations.metadata(user_id)
    return {"starred": sorted(meta["starred"]), "archived": sorted(meta["archived"])}


@router.put(
    "/conversations/{conversation_id}/star",
    response_model=AnnotationResponseModel,
)
def star_conversation(
    conversation_id: str,
    user_id: str = Depends(get_current_user_id),
    conversations: ConversationDirectory = Depends(get_conversation_directory),
    annotations: ChatAnnotations = Depends(get_chat_annotations),
):
    conversations.require_participant(conversation_id, user_id)
    annotations.star(user_id, conversation_id)
    return {"conversation_id": conversation_id, "starred": True}


@router.delete(
    "/conversations/{conversation_id}/star",
    response_model=AnnotationResponseModel,
)
def unstar_conversation(
    conversation_id: str,
    user_id: str = Depends(get_current_user_id),
    annotations: ChatAnnotations = Depends(get_chat_annotations),
):
    annotations.unstar(user_id, conversation_id)
    return {"conversation_id": conversation_id, "starred": False}


@router.put(
    "/conversations/{conversation_id}/archive",
    response_model=AnnotationResponseModel,
)
def archive_conversation(
    conversation_id: str,
    user_id: str = Depends(get_current_user_id),
    conversations: ConversationDirectory = Depends(get_conversation_directory),
    annotations: ChatAnnotations = Depends(get_chat_annotations),
):
    conversations.require_participant(conversation_id, user_id)
    annotations.archive(user_id, conversation_id)
    return {"conversation_id": conversation_id, "archived": True}


@router.delete(
    "/conversations/{conversation_id}/archive",
    response_model=AnnotationResponseModel,
)
def unarchive_conversation(
    conversation_id: str,
    user_id: str = Depends(get_current_user_id),
    annotations: ChatAnnotations = Depends(get_chat_annotations),
):
    annotations.unarchive(user_id, conversation_id)
    return {"conversation_id": conversation_id, "archived": False}
