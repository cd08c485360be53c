from __future__ import annotations

import logging
import threading
import time
from functools import lru_cache
from typing import Callable

from adchat.config import settings
from adchat.domain.conversations import Conversation, OwnerScope
from adchat.errors import ConversationBusyError
from adchat.services.artifact_reconciler import ArtifactReconciler
from adchat.services.conversation_controller import ConversationController
from adchat.services.generation_orchestrator import GenerationOrchestrator
from adchat.services.job_notifications import JobNotificationCenter
from adchat.services.job_poller import JobPoller
from adchat.services.video_chat_client import VideoChatClient

logger = logging.getLogger(__name__)


class VideoChatRuntime:
    """Process-wide wiring of the video chat services plus the open conversations.

    At most one ``Conversation`` object is held per conversation id, so its in-flight send
    guard is shared by every request that touches the conversation. Conversations idle for
    longer than ``idle_seconds`` are dropped unless a send is in flight.
    """

    def __init__(
        self,
        *,
        client: VideoChatClient,
        poller: JobPoller | None = None,
        notification_poller: JobPoller | None = None,
        idle_seconds: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.client = client
        self.poller = poller or JobPoller()
        # Separate registry: tracking a job for notifications must not replace its generation watch.
        self.notification_poller = notification_poller or JobPoller()
        self.controller = ConversationController(client=client)
        self.reconciler = ArtifactReconciler(client=client)
        self.orchestrator = GenerationOrchestrator(
            client=client,
            controller=self.controller,
            reconciler=self.reconciler,
            poller=self.poller,
        )
        self.notifications = JobNotificationCenter(client=client, poller=self.notification_poller)
        self.idle_seconds = float(settings.OPEN_CONVERSATION_IDLE_SECONDS if idle_seconds is None else idle_seconds)
        self._clock = clock
        self._conversations: dict[str, Conversation] = {}
        self._touched_at: dict[str, float] = {}
        self._lock = threading.Lock()

    def remember(self, conversation: Conversation) -> Conversation:
        """Hold ``conversation`` and return the canonical object for its id.

        When an object for the same id and brand is already held, that one is kept and returned.
        """
        with self._lock:
            self._prune_idle()
            held = self._conversations.get(conversation.id)
            if held is None or held.scope.brand_id != conversation.scope.brand_id:
                self._conversations[conversation.id] = conversation
                held = conversation
            self._touched_at[conversation.id] = self._clock()
            return held

    def conversation(self, scope: OwnerScope, conversation_id: str) -> Conversation:
        """Return the open conversation, resuming it from the backend when it is not held here."""
        held = self._held(scope, conversation_id)
        if held is not None:
            return held
        return self.remember(self.controller.resume(scope, conversation_id))

    def resume(self, scope: OwnerScope, conversation_id: str) -> Conversation:
        """Like ``conversation`` but reloads the transcript of a held conversation."""
        held = self._held(scope, conversation_id)
        if held is None:
            return self.remember(self.controller.resume(scope, conversation_id))
        try:
            self.controller.refresh(held)
        except ConversationBusyError:
            logger.info("Conversation %s has a send in flight; serving the held transcript", conversation_id)
        return held

    def forget(self, conversation_id: str) -> None:
        with self._lock:
            self._conversations.pop(conversation_id, None)
            self._touched_at.pop(conversation_id, None)

    def open_conversation_ids(self) -> list[str]:
        with self._lock:
            self._prune_idle()
            return list(self._conversations)

    def shutdown(self) -> None:
        logger.info(
            "Stopping %s generation poll(s) and %s tracked job poll(s)",
            len(self.poller.active_job_ids()),
            len(self.notification_poller.active_job_ids()),
        )
        self.orchestrator.shutdown()
        self.notifications.clear()

    def _held(self, scope: OwnerScope, conversation_id: str) -> Conversation | None:
        with self._lock:
            self._prune_idle()
            held = self._conversations.get(conversation_id)
            if held is None or held.scope.brand_id != scope.brand_id:
                return None
            self._touched_at[conversation_id] = self._clock()
            return held

    def _prune_idle(self) -> None:
        cutoff = self._clock() - self.idle_seconds
        for conversation_id, touched_at in list(self._touched_at.items()):
            conversation = self._conversations.get(conversation_id)
            if touched_at > cutoff or (conversation is not None and conversation.sending):
                continue
            del self._touched_at[conversation_id]
            self._conversations.pop(conversation_id, None)


@lru_cache
def get_runtime() -> VideoChatRuntime:
    return VideoChatRuntime(client=VideoChatClient())
