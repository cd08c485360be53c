from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Iterable, Mapping, Optional, Union

from adchat.config import settings as app_settings
from adchat.domain.conversations import (
    Conversation,
    ConversationSettings,
    Message,
    MessageRole,
    OwnerScope,
    utcnow,
)
from adchat.errors import (
    ConversationBusyError,
    MissingReferenceError,
    VideoChatRequestError,
    classify_length_rejection,
)
from adchat.schemas.video_chat import (
    ConversationMessageOut,
    VideoConversationCreateIn,
    VideoConversationOut,
    VideoConversationSummaryOut,
)
from adchat.services.message_filter import filter_messages
from adchat.services.video_chat_client import VideoChatClient

logger = logging.getLogger(__name__)

FINALIZE_TEXT = "I'm ready to generate the video"


@dataclass(frozen=True)
class FinalReply:
    """The backend's complete generation brief, returned by a finalize turn."""

    conversation_id: str
    text: str
    request: Message
    reply: Message


SettingsHint = Optional[Union[ConversationSettings, Mapping[str, Any]]]


class ConversationController:
    def __init__(self, *, client: VideoChatClient, allow_no_product: bool | None = None) -> None:
        self.client = client
        self.allow_no_product = (
            app_settings.VIDEO_CHAT_ALLOW_NO_PRODUCT if allow_no_product is None else allow_no_product
        )

    def create(
        self,
        scope: OwnerScope,
        reference_image_url: str | None,
        settings: ConversationSettings | None = None,
    ) -> Conversation:
        reference = (reference_image_url or "").strip()
        self._require_reference(scope, reference)
        conversation_settings = settings or ConversationSettings()

        response = self.client.create_conversation(
            brand_id=scope.brand_id,
            product_id=scope.product_id,
            payload=VideoConversationCreateIn(reference_image_url=reference, **conversation_settings.to_wire()),
        )
        conversation_id = response.conversation_id or ""
        logger.info(
            "Created video conversation %s for brand=%s product=%s provider=%s",
            conversation_id,
            scope.brand_id,
            scope.product_id,
            conversation_settings.provider.value,
        )
        return Conversation(
            id=conversation_id,
            scope=scope,
            settings=conversation_settings,
            reference_image_url=reference,
        )

    def resume(self, scope: OwnerScope, conversation_id: str, hint: SettingsHint = None) -> Conversation:
        """Reattach to an existing conversation.

        Stored settings win; fields the stored record omits come from ``hint``, then the
        defaults. Raises NotFoundError when the backend has no such conversation.
        """
        if not conversation_id:
            raise ValueError("conversation_id is required to resume a conversation")
        record = self.client.get_conversation(
            brand_id=scope.brand_id,
            product_id=scope.product_id,
            conversation_id=conversation_id,
        )
        return Conversation(
            id=record.conversation_id or conversation_id,
            scope=scope,
            settings=_resolve_settings(record, hint),
            reference_image_url=record.reference_image_url or "",
            messages=_visible_messages(record.messages),
            current_image_url=record.current_image_url,
            last_video_url=record.video_url,
        )

    def send(self, conversation: Conversation, text: str) -> Message:
        _, reply = self._exchange(conversation, text, finish=False)
        return reply

    def finalize(self, conversation: Conversation, text: str | None = None) -> FinalReply:
        try:
            request, reply = self._exchange(conversation, text or FINALIZE_TEXT, finish=True)
        except VideoChatRequestError as exc:
            classified = classify_length_rejection(exc)
            if classified is exc:
                raise
            raise classified from exc
        conversation.finalize_count += 1
        logger.info(
            "Finalized conversation %s (cycle %s, brief_chars=%s)",
            conversation.id,
            conversation.finalize_count,
            len(reply.content),
        )
        return FinalReply(conversation_id=conversation.id, text=reply.content, request=request, reply=reply)

    def refresh(self, conversation: Conversation) -> Conversation:
        """Reload the transcript, swapping local entries for their confirmed server copies."""
        if not conversation.try_begin_send():
            raise ConversationBusyError(conversation.id)
        try:
            record = self.client.get_conversation(
                brand_id=conversation.scope.brand_id,
                product_id=conversation.scope.product_id,
                conversation_id=conversation.id,
            )
            confirmed = _visible_messages(record.messages)
            unconfirmed = _unmatched_local(conversation.messages, confirmed)
            conversation.replace_messages([*confirmed, *unconfirmed])
            if record.current_image_url:
                conversation.current_image_url = record.current_image_url
            if record.video_url:
                conversation.last_video_url = record.video_url
        finally:
            conversation.end_send()
        return conversation

    def list_conversations(self, scope: OwnerScope, *, limit: int = 50) -> list[VideoConversationSummaryOut]:
        response = self.client.list_conversations(
            brand_id=scope.brand_id,
            product_id=scope.product_id,
            limit=limit,
        )
        return list(response.conversations)

    def _require_reference(self, scope: OwnerScope, reference_image_url: str) -> None:
        if not scope.brand_id:
            raise MissingReferenceError("A brand is required to start a video conversation")
        if self.allow_no_product:
            return
        if not scope.product_id:
            raise MissingReferenceError("A product is required to start a video conversation")
        if not reference_image_url:
            raise MissingReferenceError("A reference image is required to start a video conversation")

    def _exchange(self, conversation: Conversation, text: str, *, finish: bool) -> tuple[Message, Message]:
        content = (text or "").strip()
        if not content:
            raise ValueError("Message text is required")
        if not conversation.try_begin_send():
            raise ConversationBusyError(conversation.id)
        try:
            optimistic = Message.optimistic(content)
            conversation.append_message(optimistic)
            try:
                response = self.client.send_message(
                    brand_id=conversation.scope.brand_id,
                    product_id=conversation.scope.product_id,
                    conversation_id=conversation.id,
                    text=content,
                    finish=finish,
                )
            except Exception:
                conversation.discard_message(optimistic.id)
                logger.warning(
                    "Send failed; rolled back optimistic message %s in conversation %s",
                    optimistic.id,
                    conversation.id,
                )
                raise
            optimistic.pending = False
            reply = Message.local_reply(response.response or "")
            conversation.append_message(reply)
            return optimistic, reply
        finally:
            conversation.end_send()


def _resolve_settings(record: VideoConversationOut, hint: SettingsHint) -> ConversationSettings:
    if isinstance(hint, ConversationSettings):
        base = hint
    else:
        base = ConversationSettings().overlay(dict(hint or {}))
    try:
        return base.overlay(record.stored_settings())
    except ValueError as exc:
        logger.warning("Ignoring unrecognised stored settings for conversation %s: %s", record.conversation_id, exc)
        return base


def _visible_messages(raw: Iterable[ConversationMessageOut]) -> list[Message]:
    messages: list[Message] = []
    seen: set[str] = set()
    for index, entry in enumerate(raw):
        message_id = entry.id or f"msg-{index}"
        if message_id in seen:
            message_id = f"{message_id}-{index}"
        seen.add(message_id)
        messages.append(
            Message(
                id=message_id,
                role=MessageRole.user if entry.role.lower() == "user" else MessageRole.assistant,
                content=entry.content,
                timestamp=entry.timestamp or utcnow(),
                image_url=entry.image_url,
            )
        )
    return list(filter_messages(messages))


def _unmatched_local(current: Iterable[Message], confirmed: list[Message]) -> list[Message]:
    available = list(confirmed)
    unmatched: list[Message] = []
    for local in current:
        if not local.is_local:
            continue
        match = next(
            (item for item in available if item.role == local.role and item.timestamp == local.timestamp),
            None,
        )
        if match is None:
            match = next(
                (
                    item
                    for item in available
                    if item.role == local.role and item.content.strip() == local.content.strip()
                ),
                None,
            )
        if match is None:
            unmatched.append(local)
        else:
            available.remove(match)
    return unmatched
