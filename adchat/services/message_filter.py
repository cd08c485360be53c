from __future__ import annotations

from typing import Sequence

from adchat.domain.conversations import Message, MessageRole

# Number of hidden setup turns the backend places at the head of every raw transcript.
# TODO: confirm with the backend team that setup is always exactly two turns; a third
# setup turn would leak into the visible transcript.
HIDDEN_SETUP_TURNS = 2

# Prompts the backend injects on the user's behalf while building the final brief.
SCAFFOLD_PROMPTS: tuple[str, ...] = (
    "give me the full sora prompt and make sure it is less than 5000 characters, while including all the user "
    "mentioned details",
    "I'm ready! Please provide the complete natural language description of my video ad concept covering: Core "
    "Vision, Emotional Core, Visual Identity, Key Scenes, Product Presentation, Target Audience Emotion, and "
    "Conversion Logic. Remember to provide this as a detailed natural language description, NOT as a technical "
    "JSON prompt.",
    "I'm ready! IN LESS THAN 4500 CHARACTERS, Please provide the complete natural language description of my video "
    "ad concept covering: Core Vision, Emotional Core, Visual Identity, Key Scenes, Product Presentation, Target "
    "Audience Emotion, and Conversion Logic. Remember to provide this as a detailed natural language description, "
    "NOT as a technical JSON prompt.",
    "give me the full sora prompt",
)

_LOWERED_SCAFFOLD_PROMPTS = tuple(prompt.lower() for prompt in SCAFFOLD_PROMPTS)


class VisibleTranscript(list):
    """Messages already stripped of setup and scaffold turns."""


def is_scaffold_text(text: str, prompts: Sequence[str] = _LOWERED_SCAFFOLD_PROMPTS) -> bool:
    lowered = (text or "").lower()
    if not lowered:
        # An empty string is a substring of every prompt; blank turns are never scaffolding.
        return False
    return any(prompt in lowered or lowered in prompt for prompt in prompts)


def _is_scaffold(message: Message) -> bool:
    return message.role == MessageRole.user and is_scaffold_text(message.content)


def _scan(messages: Sequence[Message]) -> list[Message]:
    kept: list[Message] = []
    i = 0
    total = len(messages)
    while i < total:
        current = messages[i]
        if i + 2 < total:
            second, reply = messages[i + 1], messages[i + 2]
            if _is_scaffold(current) and _is_scaffold(second) and reply.role == MessageRole.assistant:
                i += 3
                continue
        if i + 1 < total:
            reply = messages[i + 1]
            if _is_scaffold(current) and reply.role == MessageRole.assistant:
                i += 2
                continue
        kept.append(current)
        i += 1
    return kept


def strip_scaffolding(messages: Sequence[Message]) -> list[Message]:
    """Remove scaffold exchanges as whole units.

    At each position ``user(scaffold), user(scaffold), assistant`` is tried before
    ``user(scaffold), assistant``; anything else is kept. The scan repeats until nothing
    more is removed, so a removal that brings a scaffold turn next to a reply is caught too.
    """
    current = list(messages)
    while True:
        reduced = _scan(current)
        if len(reduced) == len(current):
            return reduced
        current = reduced


def filter_messages(raw_messages: Sequence[Message]) -> VisibleTranscript:
    """Return the user-visible part of a backend transcript.

    The hidden setup prefix is only dropped from raw transcripts; passing an already
    visible transcript back in returns it unchanged.
    """
    if isinstance(raw_messages, VisibleTranscript):
        body: Sequence[Message] = raw_messages
    else:
        body = raw_messages[HIDDEN_SETUP_TURNS:]
    return VisibleTranscript(strip_scaffolding(body))
