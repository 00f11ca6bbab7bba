"""Member/staff support conversations."""

import logging
from datetime import datetime
from typing import AsyncIterator, Callable, Optional
from uuid import UUID, uuid4

from libris.domain.entities import Conversation, ConversationStatus, Identity, Message
from libris.domain.errors import NotAuthenticated, NotFound, ValidationError
from libris.domain.policies import Capability, authorize
from libris.domain.repositories import (
    IConversationRepository,
    IMessageBroker,
    IMessageRepository,
    IProfileRepository,
)
from libris.domain.services import IMessagingService
from libris.infrastructure.realtime.broker import conversation_channel

logger = logging.getLogger(__name__)

MAX_MESSAGE_LENGTH = 4000


class MessagingService(IMessagingService):

    def __init__(
        self,
        conversation_repository: IConversationRepository,
        message_repository: IMessageRepository,
        profile_repository: IProfileRepository,
        broker: IMessageBroker,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self.conversation_repository = conversation_repository
        self.message_repository = message_repository
        self.profile_repository = profile_repository
        self.broker = broker
        self.clock = clock

    async def create_conversation(
        self, identity: Optional[Identity], title: Optional[str] = None
    ) -> Conversation:
        authorize(identity, Capability.MESSAGE)
        now = self.clock()
        conversation = await self.conversation_repository.create(
            Conversation(
                id=uuid4(),
                user_id=identity.user_id,
                title=(title or "").strip() or "Support",
                created_at=now,
                updated_at=now,
            )
        )
        logger.info("Conversation %s opened by %s", conversation.id, identity.user_id)
        return conversation

    async def list_conversations(self, identity: Optional[Identity]) -> list[Conversation]:
        """Staff see every conversation with the member's profile attached."""
        authorize(identity, Capability.MESSAGE)
        if not identity.is_admin:
            return await self.conversation_repository.list_conversations(identity.user_id)

        conversations = await self.conversation_repository.list_conversations()
        try:
            profiles = await self.profile_repository.get_many(
                list({c.user_id for c in conversations})
            )
        except Exception as exc:
            logger.warning("Could not load profiles for conversations: %s", exc)
            return conversations
        by_id = {p.id: p for p in profiles}
        for conversation in conversations:
            conversation.profile = by_id.get(conversation.user_id)
        return conversations

    async def get_conversation(
        self, identity: Optional[Identity], conversation_id: UUID
    ) -> Conversation:
        if identity is None:
            raise NotAuthenticated()
        conversation = await self.conversation_repository.get_by_id(conversation_id)
        if not conversation:
            raise NotFound("Conversation not found")
        authorize(identity, Capability.VIEW_CONVERSATION, owner_id=conversation.user_id)
        return conversation

    async def list_messages(
        self, identity: Optional[Identity], conversation_id: UUID
    ) -> list[Message]:
        await self.get_conversation(identity, conversation_id)
        return await self.message_repository.list_by_conversation(conversation_id)

    async def send_message(
        self, identity: Optional[Identity], conversation_id: UUID, content: str
    ) -> Message:
        conversation = await self.get_conversation(identity, conversation_id)
        if conversation.status != ConversationStatus.OPEN:
            raise ValidationError("This conversation is closed")
        content = (content or "").strip()
        if not content:
            raise ValidationError("Message cannot be empty")
        if len(content) > MAX_MESSAGE_LENGTH:
            raise ValidationError(f"Messages are limited to {MAX_MESSAGE_LENGTH} characters")

        now = self.clock()
        message = await self.message_repository.create(
            Message(
                id=uuid4(),
                conversation_id=conversation_id,
                sender_id=identity.user_id,
                content=content,
                created_at=now,
            )
        )
        await self.conversation_repository.touch(conversation_id, now)

        try:
            await self.broker.publish(
                conversation_channel(conversation_id),
                {
                    "id": str(message.id),
                    "conversation_id": str(message.conversation_id),
                    "sender_id": str(message.sender_id),
                    "content": message.content,
                    "read": message.read,
                    "created_at": message.created_at.isoformat(),
                },
            )
        except Exception as exc:
            logger.warning("Realtime publish failed for message %s: %s", message.id, exc)
        return message

    async def mark_read(self, identity: Optional[Identity], conversation_id: UUID) -> int:
        await self.get_conversation(identity, conversation_id)
        return await self.message_repository.mark_read(conversation_id, identity.user_id)

    async def close_conversation(
        self, identity: Optional[Identity], conversation_id: UUID
    ) -> Conversation:
        conversation = await self.get_conversation(identity, conversation_id)
        if conversation.status == ConversationStatus.CLOSED:
            return conversation
        closed = await self.conversation_repository.set_status(
            conversation_id, ConversationStatus.CLOSED
        )
        if closed is None:
            raise NotFound("Conversation not found")
        logger.info("Conversation %s closed by %s", conversation_id, identity.user_id)
        return closed

    async def subscribe(
        self, identity: Optional[Identity], conversation_id: UUID
    ) -> AsyncIterator[dict]:
        await self.get_conversation(identity, conversation_id)
        return self.broker.subscribe(conversation_channel(conversation_id))
