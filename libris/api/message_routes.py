"""Support conversation routes, including the realtime WebSocket feed."""

import logging
from typing import Annotated, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect, status

from libris.api.schemas import (
    ConversationCreate,
    ConversationResponse,
    MarkReadResponse,
    MessageCreate,
    MessageResponse,
)
from libris.core.dependencies import (
    CurrentIdentity,
    get_auth_service,
    get_messaging_service,
    get_optional_identity,
    get_revocation_list,
    get_token_claims,
)
from libris.core.redis_client import RevocationList
from libris.domain.errors import LibraryError, NotAuthenticated
from libris.domain.services import IMessagingService
from libris.services.auth_service import AuthService

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/conversations", tags=["conversations"])

MessagingServiceDep = Annotated[IMessagingService, Depends(get_messaging_service)]


@router.post("/", response_model=ConversationResponse, status_code=status.HTTP_201_CREATED)
async def create_conversation(
    body: ConversationCreate, identity: CurrentIdentity, service: MessagingServiceDep
) -> ConversationResponse:
    conversation = await service.create_conversation(identity, body.title)
    return ConversationResponse.model_validate(conversation)


@router.get("/", response_model=list[ConversationResponse])
async def list_conversations(
    identity: CurrentIdentity, service: MessagingServiceDep
) -> list[ConversationResponse]:
    """Your conversations; staff see all of them with the member's profile."""
    conversations = await service.list_conversations(identity)
    return [ConversationResponse.model_validate(c) for c in conversations]


@router.get("/{conversation_id}/messages", response_model=list[MessageResponse])
async def list_messages(
    conversation_id: UUID, identity: CurrentIdentity, service: MessagingServiceDep
) -> list[MessageResponse]:
    messages = await service.list_messages(identity, conversation_id)
    return [MessageResponse.model_validate(m) for m in messages]


@router.post(
    "/{conversation_id}/messages",
    response_model=MessageResponse,
    status_code=status.HTTP_201_CREATED,
)
async def send_message(
    conversation_id: UUID,
    body: MessageCreate,
    identity: CurrentIdentity,
    service: MessagingServiceDep,
) -> MessageResponse:
    message = await service.send_message(identity, conversation_id, body.content)
    return MessageResponse.model_validate(message)


@router.post("/{conversation_id}/read", response_model=MarkReadResponse)
async def mark_read(
    conversation_id: UUID, identity: CurrentIdentity, service: MessagingServiceDep
) -> MarkReadResponse:
    count = await service.mark_read(identity, conversation_id)
    return MarkReadResponse(conversation_id=conversation_id, marked_read=count)


@router.post("/{conversation_id}/close", response_model=ConversationResponse)
async def close_conversation(
    conversation_id: UUID, identity: CurrentIdentity, service: MessagingServiceDep
) -> ConversationResponse:
    conversation = await service.close_conversation(identity, conversation_id)
    return ConversationResponse.model_validate(conversation)


@router.websocket("/{conversation_id}/ws")
async def conversation_feed(
    websocket: WebSocket,
    conversation_id: UUID,
    service: MessagingServiceDep,
    auth_service: Annotated[AuthService, Depends(get_auth_service)],
    revocation_list: Annotated[RevocationList, Depends(get_revocation_list)],
    token: Optional[str] = None,
) -> None:
    """Push every message sent to the conversation as JSON.

    Browsers cannot set headers on a WebSocket, so the access token travels
    in the ``token`` query parameter.  Errors close the socket with code
    ``4000 + HTTP status``.
    """
    try:
        claims = await get_token_claims(token, revocation_list)
        identity = await get_optional_identity(claims, auth_service)
        if identity is None:
            raise NotAuthenticated()
        stream = await service.subscribe(identity, conversation_id)
    except LibraryError as exc:
        await websocket.close(code=4000 + exc.status_code, reason=exc.message)
        return

    await websocket.accept()
    logger.info("WebSocket feed opened for conversation %s by %s", conversation_id, identity.user_id)
    try:
        async for payload in stream:
            await websocket.send_json(payload)
    except WebSocketDisconnect:
        logger.info("WebSocket feed closed for conversation %s", conversation_id)
    finally:
        await stream.aclose()
