import threading

import pytest

from adchat.domain.conversations import (
    AdPlatform,
    AspectRatio,
    Conversation,
    ConversationSettings,
    ConversationState,
    Message,
    MessageRole,
    OwnerScope,
    VideoProvider,
)
from adchat.errors import (
    ConversationBusyError,
    MissingReferenceError,
    NotFoundError,
    PromptTooLongError,
    TransientIOError,
    VideoChatRequestError,
)
from adchat.services.conversation_controller import FINALIZE_TEXT, ConversationController

SCOPE = OwnerScope(brand_id="brand-1", product_id="product-1")


def _conversation(**overrides) -> Conversation:
    values = {"id": "conv-1", "scope": SCOPE, "settings": ConversationSettings()}
    values.update(overrides)
    return Conversation(**values)


def _stored(messages=None, **fields):
    record = {
        "conversation_id": "conv-9",
        "messages": messages if messages is not None else [],
        "reference_image_url": "https://x/ref.png",
    }
    record.update(fields)
    return record


def test_create_returns_empty_conversation_with_given_settings(fake_client):
    settings = ConversationSettings(
        provider="kie",
        duration_seconds=15,
        platform="tiktok",
        aspect_ratio="9:16",
        language="en",
    )
    controller = ConversationController(client=fake_client)

    conversation = controller.create(SCOPE, "https://x/img.png", settings)

    assert conversation.id == "conv-1"
    assert conversation.messages == ()
    assert conversation.started is False
    assert conversation.state == ConversationState.created
    assert conversation.settings == settings
    assert conversation.settings.provider == VideoProvider.kie
    assert conversation.settings.platform == AdPlatform.tiktok
    assert conversation.settings.aspect_ratio == AspectRatio.portrait
    assert conversation.reference_image_url == "https://x/img.png"

    payload = fake_client.calls_named("create_conversation")[0]["payload"]
    assert payload.model_dump() == {
        "reference_image_url": "https://x/img.png",
        "duration": 15,
        "provider": "kie",
        "platform": "tiktok",
        "aspect_ratio": "9:16",
        "language": "en",
    }


def test_create_defaults_to_storyboard_provider(fake_client):
    conversation = ConversationController(client=fake_client).create(SCOPE, "https://x/img.png")

    assert conversation.settings.provider == VideoProvider.kie_story
    assert conversation.settings.duration_seconds == 15


def test_create_requires_product_and_image_outside_no_product_mode(fake_client):
    controller = ConversationController(client=fake_client, allow_no_product=False)

    with pytest.raises(MissingReferenceError):
        controller.create(OwnerScope(brand_id="brand-1"), "https://x/img.png")
    with pytest.raises(MissingReferenceError):
        controller.create(SCOPE, "  ")
    with pytest.raises(MissingReferenceError):
        ConversationController(client=fake_client, allow_no_product=True).create(OwnerScope(brand_id=""), "")
    assert fake_client.calls_named("create_conversation") == []


def test_create_in_no_product_mode_allows_missing_product_and_image(fake_client):
    conversation = ConversationController(client=fake_client, allow_no_product=True).create(
        OwnerScope(brand_id="brand-1"), None
    )

    assert conversation.scope.product_id is None
    assert conversation.reference_image_url == ""
    assert fake_client.calls_named("create_conversation")[0]["product_id"] is None


def test_resume_unknown_conversation_raises_not_found(fake_client):
    controller = ConversationController(client=fake_client)

    with pytest.raises(NotFoundError):
        controller.resume(SCOPE, "missing")


def test_resume_filters_transcript_and_prefers_stored_settings(fake_client):
    fake_client.conversations["conv-9"] = _stored(
        messages=[
            {"role": "user", "content": "setup"},
            {"role": "assistant", "content": "welcome"},
            {"id": "s1", "role": "user", "content": "Cozy candle ad"},
            {"id": "s2", "role": "assistant", "content": "Love it"},
            {"role": "user", "content": "give me the full sora prompt"},
            {"role": "assistant", "content": "Full brief"},
        ],
        provider="openai",
        duration=None,
        currentImageUrl="https://x/current.png",
    )
    controller = ConversationController(client=fake_client)

    conversation = controller.resume(
        SCOPE,
        "conv-9",
        hint={"duration": 25, "provider": "kie", "language": "de"},
    )

    assert [message.id for message in conversation.messages] == ["s1", "s2"]
    assert conversation.started
    assert conversation.settings.provider == VideoProvider.openai
    assert conversation.settings.duration_seconds == 25
    assert conversation.settings.language == "de"
    assert conversation.reference_image_url == "https://x/ref.png"
    assert conversation.current_image_url == "https://x/current.png"


def test_resume_synthesizes_stable_ids_for_messages_without_one(fake_client):
    fake_client.conversations["conv-9"] = _stored(
        messages=[
            {"role": "user", "content": "setup"},
            {"role": "assistant", "content": "welcome"},
            {"role": "user", "content": "Hello there"},
        ]
    )

    conversation = ConversationController(client=fake_client).resume(SCOPE, "conv-9")

    assert [message.id for message in conversation.messages] == ["msg-2"]


def test_send_appends_confirmed_user_turn_and_reply(fake_client):
    fake_client.replies = ["Tell me about your audience"]
    conversation = _conversation()

    reply = ConversationController(client=fake_client).send(conversation, "  A candle ad  ")

    messages = conversation.messages
    assert [message.role for message in messages] == [MessageRole.user, MessageRole.assistant]
    assert messages[0].content == "A candle ad"
    assert messages[0].pending is False
    assert reply is messages[1]
    assert reply.content == "Tell me about your audience"
    assert conversation.state == ConversationState.started
    assert fake_client.calls_named("send_message")[0]["finish"] is False


def test_send_shows_optimistic_message_while_in_flight(fake_client):
    fake_client.send_gate = threading.Event()
    conversation = _conversation()
    controller = ConversationController(client=fake_client)

    worker = threading.Thread(target=controller.send, args=(conversation, "hello"))
    worker.start()
    try:
        assert fake_client.send_started.wait(1)
        assert [(message.content, message.pending) for message in conversation.messages] == [("hello", True)]
        assert conversation.sending
    finally:
        fake_client.send_gate.set()
        worker.join(2)

    assert not conversation.sending
    assert len(conversation.messages) == 2


def test_second_concurrent_send_is_rejected(fake_client):
    fake_client.send_gate = threading.Event()
    conversation = _conversation()
    controller = ConversationController(client=fake_client)

    worker = threading.Thread(target=controller.send, args=(conversation, "first"))
    worker.start()
    try:
        assert fake_client.send_started.wait(1)
        with pytest.raises(ConversationBusyError):
            controller.send(conversation, "second")
    finally:
        fake_client.send_gate.set()
        worker.join(2)

    assert [message.content for message in conversation.messages] == ["first", "Sounds great."]
    assert len(fake_client.calls_named("send_message")) == 1


def test_failed_send_rolls_back_the_optimistic_message(fake_client):
    fake_client.replies = [TransientIOError(message="backend down", status_code=503)]
    conversation = _conversation(messages=[Message(id="s1", role=MessageRole.assistant, content="Hi")])
    controller = ConversationController(client=fake_client)

    with pytest.raises(TransientIOError):
        controller.send(conversation, "hello")

    assert [message.id for message in conversation.messages] == ["s1"]
    assert not conversation.sending
    assert len(fake_client.calls_named("send_message")) == 1


def test_empty_message_is_rejected_before_any_call(fake_client):
    with pytest.raises(ValueError):
        ConversationController(client=fake_client).send(_conversation(), "   ")
    assert fake_client.calls_named("send_message") == []


def test_finalize_sends_finish_with_default_text(fake_client):
    fake_client.replies = ["A complete brief"]
    conversation = _conversation()

    final = ConversationController(client=fake_client).finalize(conversation)

    call = fake_client.calls_named("send_message")[0]
    assert call["finish"] is True
    assert call["text"] == FINALIZE_TEXT
    assert final.text == "A complete brief"
    assert final.conversation_id == "conv-1"
    assert conversation.finalized
    assert conversation.state == ConversationState.finalized


def test_finalize_length_rejection_becomes_prompt_too_long(fake_client):
    fake_client.replies = [
        VideoChatRequestError(message="video_description must be at most 5000 characters", status_code=400)
    ]
    conversation = _conversation()

    with pytest.raises(PromptTooLongError) as excinfo:
        ConversationController(client=fake_client).finalize(conversation)

    assert excinfo.value.status_code == 400
    assert conversation.messages == ()
    assert not conversation.finalized


def test_finalize_other_errors_pass_through(fake_client):
    fake_client.replies = [VideoChatRequestError(message="bad request", status_code=400)]

    with pytest.raises(VideoChatRequestError) as excinfo:
        ConversationController(client=fake_client).finalize(_conversation())

    assert not isinstance(excinfo.value, PromptTooLongError)


def test_finalized_conversation_still_accepts_sends_and_second_finalize(fake_client):
    conversation = _conversation()
    controller = ConversationController(client=fake_client)

    controller.finalize(conversation)
    controller.send(conversation, "Make it brighter")
    controller.finalize(conversation)

    assert conversation.finalize_count == 2


def test_refresh_replaces_local_entries_with_server_copies(fake_client):
    conversation = _conversation(id="conv-9")
    controller = ConversationController(client=fake_client)
    fake_client.replies = ["Server reply"]
    controller.send(conversation, "Make it blue")
    controller.send(conversation, "Not on the server yet")
    fake_client.conversations["conv-9"] = _stored(
        messages=[
            {"role": "user", "content": "setup"},
            {"role": "assistant", "content": "welcome"},
            {"id": "srv-1", "role": "user", "content": "Make it blue"},
            {"id": "srv-2", "role": "assistant", "content": "Server reply", "imageUrl": "https://x/preview.png"},
        ],
        currentImageUrl="https://x/preview.png",
    )

    controller.refresh(conversation)

    ids = [message.id for message in conversation.messages]
    assert ids[:2] == ["srv-1", "srv-2"]
    assert [message.content for message in conversation.messages[2:]] == ["Not on the server yet", "Sounds great."]
    assert conversation.messages[1].image_url == "https://x/preview.png"
    assert conversation.current_image_url == "https://x/preview.png"


def test_list_conversations_returns_summaries(fake_client):
    fake_client.conversations["conv-9"] = _stored()

    summaries = ConversationController(client=fake_client).list_conversations(SCOPE, limit=10)

    assert [summary.conversation_id for summary in summaries] == ["conv-9"]
    assert fake_client.calls_named("list_conversations")[0]["limit"] == 10
