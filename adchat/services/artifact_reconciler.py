from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime, timezone
from typing import Iterable

from adchat.config import settings
from adchat.domain.jobs import Artifact, ArtifactKind, ArtifactScope
from adchat.services.video_chat_client import VideoChatClient

logger = logging.getLogger(__name__)

# Entries without a timestamp sort as the oldest.
_MISSING_CREATED_AT = datetime(1970, 1, 1, tzinfo=timezone.utc)


def _aware(value: datetime | None) -> datetime:
    if value is None:
        return _MISSING_CREATED_AT
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def mark_latest(artifacts: Iterable[Artifact]) -> list[Artifact]:
    """Sort newest first and flag only the newest artifact as latest.

    Duplicate ids collapse to their first occurrence.
    """
    seen: set[str] = set()
    unique: list[Artifact] = []
    for artifact in artifacts:
        if artifact.id in seen:
            continue
        seen.add(artifact.id)
        unique.append(artifact)

    ordered = sorted(unique, key=lambda artifact: artifact.created_at, reverse=True)
    return [replace(artifact, is_latest=index == 0) for index, artifact in enumerate(ordered)]


class ArtifactReconciler:
    """Read-only view of the artifacts a conversation or product has produced."""

    def __init__(self, *, client: VideoChatClient, limit: int | None = None) -> None:
        self.client = client
        self.limit = int(limit or settings.ARTIFACT_FETCH_LIMIT or 100)

    def pull(self, scope: ArtifactScope) -> list[Artifact]:
        if not scope.brand_id:
            raise ValueError("brand_id is required to pull artifacts")
        if scope.conversation_id:
            artifacts = self._conversation_videos(scope)
        elif scope.product_id:
            artifacts = self._product_images(scope)
        else:
            raise ValueError("Artifact scope needs a conversation_id or a product_id")
        return mark_latest(artifacts)

    def _conversation_videos(self, scope: ArtifactScope) -> list[Artifact]:
        response = self.client.list_conversation_videos(
            brand_id=scope.brand_id,
            product_id=scope.product_id,
            conversation_id=scope.conversation_id or "",
        )
        artifacts: list[Artifact] = []
        for index, video in enumerate(response.videos):
            if not video.video_url:
                logger.debug("Skipping video without url in conversation %s", scope.conversation_id)
                continue
            artifacts.append(
                Artifact(
                    id=video.id or video.job_id or f"video-{index}",
                    url=video.video_url,
                    created_at=_aware(video.created_at),
                    kind=ArtifactKind.video,
                    source_job_id=video.job_id,
                )
            )
        return artifacts

    def _product_images(self, scope: ArtifactScope) -> list[Artifact]:
        response = self.client.list_product_ads(
            brand_id=scope.brand_id,
            product_id=scope.product_id or "",
            limit=self.limit,
        )
        artifacts: list[Artifact] = []
        for index, ad in enumerate(response.ads):
            if not ad.image_url:
                continue
            artifacts.append(
                Artifact(
                    id=ad.id or f"ad-{index}",
                    url=ad.image_url,
                    created_at=_aware(ad.created_at),
                    kind=ArtifactKind.image,
                    source_job_id=ad.job_id,
                )
            )
        return artifacts
