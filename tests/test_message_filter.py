from datetime import datetime, timedelta, timezone

from adchat.domain.conversations import Message, MessageRole
from adchat.services.message_filter import (
    SCAFFOLD_PROMPTS,
    VisibleTranscript,
    filter_messages,
    is_scaffold_text,
    strip_scaffolding,
)

_BASE = datetime(2025, 1, 1, tzinfo=timezone.utc)


def _transcript(*turns: tuple[str, str]) -> list[Message]:
    return [
        Message(id=f"m{index}", role=MessageRole(role), content=content, timestamp=_BASE + timedelta(seconds=index))
        for index, (role, content) in enumerate(turns)
    ]


SETUP = (("user", "system setup"), ("assistant", "Hi! Tell me about your product."))


def _ids(messages) -> list[str]:
    return [message.id for message in messages]


def test_setup_prefix_is_always_dropped():
    raw = _transcript(*SETUP, ("user", "I sell candles"), ("assistant", "Lovely!"))

    assert _ids(filter_messages(raw)) == ["m2", "m3"]


def test_two_turn_scaffold_exchange_is_removed_as_a_unit():
    raw = _transcript(
        *SETUP,
        ("user", "Make it cozy"),
        ("assistant", "Got it"),
        ("user", "give me the full sora prompt"),
        ("assistant", "Here is the full prompt..."),
        ("user", "Thanks"),
    )

    assert _ids(filter_messages(raw)) == ["m2", "m3", "m6"]


def test_three_turn_scaffold_exchange_is_checked_first():
    raw = _transcript(
        *SETUP,
        ("user", SCAFFOLD_PROMPTS[1]),
        ("user", SCAFFOLD_PROMPTS[0]),
        ("assistant", "A long natural language description"),
        ("user", "Can you make it shorter?"),
    )

    assert _ids(filter_messages(raw)) == ["m5"]


def test_scaffold_user_turn_without_reply_is_kept():
    raw = _transcript(*SETUP, ("user", "Hello"), ("user", "give me the full sora prompt"))

    assert _ids(filter_messages(raw)) == ["m2", "m3"]


def test_assistant_text_matching_a_prompt_is_not_scaffolding():
    raw = _transcript(*SETUP, ("assistant", "give me the full sora prompt"), ("assistant", "ok"))

    assert _ids(filter_messages(raw)) == ["m2", "m3"]


def test_scaffold_matching_is_case_insensitive_in_both_directions():
    assert is_scaffold_text("GIVE ME THE FULL SORA PROMPT")
    assert is_scaffold_text("Please give me the full Sora prompt now")
    assert is_scaffold_text("I'm ready!")
    assert not is_scaffold_text("")
    assert not is_scaffold_text("Make the video warmer")


def test_filter_is_idempotent():
    raw = _transcript(
        *SETUP,
        ("user", "give me the full sora prompt"),
        ("user", "give me the full sora prompt"),
        ("user", "give me the full sora prompt"),
        ("assistant", "brief"),
        ("user", "first real question"),
        ("assistant", "first real answer"),
        ("user", "give me the full sora prompt"),
        ("assistant", "brief again"),
    )

    once = filter_messages(raw)
    twice = filter_messages(once)

    assert isinstance(once, VisibleTranscript)
    assert _ids(twice) == _ids(once)


def test_filter_keeps_order_and_only_emits_input_messages():
    raw = _transcript(
        *SETUP,
        ("user", "one"),
        ("assistant", "two"),
        ("user", "give me the full sora prompt"),
        ("assistant", "three"),
        ("user", "four"),
        ("assistant", "five"),
    )
    raw_ids = _ids(raw)

    kept = _ids(filter_messages(raw))

    assert set(kept) <= set(raw_ids)
    assert kept == sorted(kept, key=raw_ids.index)


def test_strip_scaffolding_catches_exchanges_exposed_by_a_removal():
    messages = _transcript(
        ("user", "give me the full sora prompt"),
        ("user", "give me the full sora prompt"),
        ("user", "give me the full sora prompt"),
        ("assistant", "brief"),
        ("assistant", "second brief"),
    )

    # The first pass removes turns 2-4, which leaves turn 1 directly before the last reply.
    assert strip_scaffolding(messages) == []


def test_short_raw_transcripts_are_empty_after_filtering():
    assert list(filter_messages(_transcript(("user", "setup")))) == []
    assert list(filter_messages([])) == []


def test_empty_user_turn_and_its_reply_are_kept():
    raw = _transcript(*SETUP, ("user", ""), ("assistant", "Could you say a bit more?"))

    assert _ids(filter_messages(raw)) == ["m2", "m3"]
