from __future__ import annotations

from typing import Any

import httpx
from pydantic import ValidationError

from adchat.config import settings
from adchat.errors import (
    NotFoundError,
    TransientIOError,
    VideoChatConfigError,
    VideoChatRequestError,
)
from adchat.schemas.video_chat import (
    ConversationVideosOut,
    GenerateVideoIn,
    GenerateVideoOut,
    JobStatusOut,
    ProductAdsOut,
    VideoChatErrorEnvelope,
    VideoConversationCreateIn,
    VideoConversationCreateOut,
    VideoConversationListOut,
    VideoConversationOut,
    VideoMessageIn,
    VideoMessageOut,
)

# Path segment used for avatar-only conversations that have no product.
NO_PRODUCT_SEGMENT = "no_product"


class VideoChatClient:
    def __init__(
        self,
        *,
        base_url: str | None = None,
        bearer_token: str | None = None,
        timeout_seconds: float | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        resolved_base = (base_url or settings.VIDEO_CHAT_API_BASE_URL or "").strip()
        resolved_token = (bearer_token or settings.VIDEO_CHAT_API_BEARER_TOKEN or "").strip()
        if not resolved_base:
            raise VideoChatConfigError("VIDEO_CHAT_API_BASE_URL is required")
        if not resolved_token:
            raise VideoChatConfigError("VIDEO_CHAT_API_BEARER_TOKEN is required")
        self.base_url = resolved_base.rstrip("/")
        self.bearer_token = resolved_token
        self.timeout_seconds = float(timeout_seconds or settings.VIDEO_CHAT_TIMEOUT_SECONDS or 30.0)
        self._transport = transport

    def create_conversation(
        self,
        *,
        brand_id: str,
        product_id: str | None,
        payload: VideoConversationCreateIn,
    ) -> VideoConversationCreateOut:
        params = {"product_id": product_id} if product_id else None
        body = self._request_json(
            "POST",
            f"/api/v1/video-chat/brands/{brand_id}/video-conversations",
            json_payload=payload.model_dump(mode="json", exclude_none=True),
            params=params,
        )
        return self._parse_model(VideoConversationCreateOut, body, context="create_conversation")

    def send_message(
        self,
        *,
        brand_id: str,
        product_id: str | None,
        conversation_id: str,
        text: str,
        finish: bool = False,
    ) -> VideoMessageOut:
        body = self._request_json(
            "POST",
            f"{self._conversation_path(brand_id, product_id, conversation_id)}/messages",
            json_payload=VideoMessageIn(message=text, finish=finish).model_dump(mode="json"),
            timeout_seconds=settings.VIDEO_CHAT_MESSAGE_TIMEOUT_SECONDS,
        )
        return self._parse_model(VideoMessageOut, body, context="send_message")

    def get_conversation(
        self,
        *,
        brand_id: str,
        product_id: str | None,
        conversation_id: str,
    ) -> VideoConversationOut:
        body = self._request_json("GET", self._conversation_path(brand_id, product_id, conversation_id))
        return self._parse_model(VideoConversationOut, body, context="get_conversation")

    def list_conversations(
        self,
        *,
        brand_id: str,
        product_id: str | None,
        limit: int = 50,
    ) -> VideoConversationListOut:
        product = product_id or NO_PRODUCT_SEGMENT
        body = self._request_json(
            "GET",
            f"/api/v1/video-chat/brands/{brand_id}/products/{product}/video-conversations",
            params={"limit": limit},
        )
        return self._parse_model(VideoConversationListOut, body, context="list_conversations")

    def submit_generation_job(
        self,
        *,
        brand_id: str,
        product_id: str | None,
        conversation_id: str,
        payload: GenerateVideoIn,
    ) -> GenerateVideoOut:
        body = self._request_json(
            "POST",
            f"{self._conversation_path(brand_id, product_id, conversation_id)}/generate-video",
            json_payload=payload.model_dump(mode="json"),
            timeout_seconds=settings.VIDEO_CHAT_SUBMIT_TIMEOUT_SECONDS,
        )
        return self._parse_model(GenerateVideoOut, body, context="submit_generation_job")

    def get_video_job_status(self, *, job_id: str) -> JobStatusOut:
        body = self._request_json(
            "GET",
            f"/api/v1/video-chat/video-jobs/{job_id}",
            timeout_seconds=settings.VIDEO_CHAT_STATUS_TIMEOUT_SECONDS,
        )
        return self._parse_model(JobStatusOut, body, context="get_video_job_status")

    def get_job_status(self, *, job_id: str) -> JobStatusOut:
        body = self._request_json(
            "GET",
            f"/api/v1/jobs/{job_id}",
            timeout_seconds=settings.VIDEO_CHAT_STATUS_TIMEOUT_SECONDS,
        )
        return self._parse_model(JobStatusOut, body, context="get_job_status")

    def list_conversation_videos(
        self,
        *,
        brand_id: str,
        product_id: str | None,
        conversation_id: str,
    ) -> ConversationVideosOut:
        body = self._request_json(
            "GET",
            f"{self._conversation_path(brand_id, product_id, conversation_id)}/videos",
        )
        return self._parse_model(ConversationVideosOut, body, context="list_conversation_videos")

    def list_product_ads(self, *, brand_id: str, product_id: str, limit: int = 100) -> ProductAdsOut:
        try:
            body = self._request_json(
                "GET",
                f"/api/v1/brands/{brand_id}/products/{product_id}/ads",
                params={"limit": limit},
            )
        except NotFoundError:
            # Products without generated ads answer 404.
            return ProductAdsOut()
        return self._parse_model(ProductAdsOut, body, context="list_product_ads")

    def _conversation_path(self, brand_id: str, product_id: str | None, conversation_id: str) -> str:
        product = product_id or NO_PRODUCT_SEGMENT
        return f"/api/v1/video-chat/brands/{brand_id}/products/{product}/video-conversations/{conversation_id}"

    def _request_json(
        self,
        method: str,
        path: str,
        *,
        json_payload: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
        timeout_seconds: float | None = None,
    ) -> dict[str, Any]:
        resp = self._request(
            method,
            path,
            json_payload=json_payload,
            params=params,
            timeout_seconds=timeout_seconds,
        )

        if resp.status_code >= 400:
            self._raise_request_error(resp)

        try:
            data = resp.json()
        except ValueError as exc:
            raise VideoChatRequestError(
                f"Video chat backend returned non-JSON payload for {method} {path}",
                status_code=resp.status_code,
            ) from exc

        if not isinstance(data, dict):
            raise VideoChatRequestError(
                f"Video chat backend returned non-object JSON payload for {method} {path}",
                status_code=resp.status_code,
            )
        return self._unwrap(data, method=method, path=path, status_code=resp.status_code)

    def _request(
        self,
        method: str,
        path: str,
        *,
        json_payload: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
        timeout_seconds: float | None = None,
    ) -> httpx.Response:
        timeout = float(timeout_seconds or self.timeout_seconds)
        try:
            with httpx.Client(base_url=self.base_url, timeout=timeout, transport=self._transport) as client:
                return client.request(
                    method=method,
                    url=path,
                    json=json_payload,
                    params=params,
                    headers=self._headers(),
                )
        except httpx.TimeoutException as exc:
            raise TransientIOError(f"Video chat backend timed out for {method} {path}: {exc}") from exc
        except httpx.TransportError as exc:
            raise TransientIOError(f"Video chat backend unreachable for {method} {path}: {exc}") from exc

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.bearer_token}",
            "Accept": "application/json",
            "Content-Type": "application/json",
        }

    def _unwrap(self, data: dict[str, Any], *, method: str, path: str, status_code: int) -> dict[str, Any]:
        # Most endpoints answer {"success": bool, "data": {...}}.
        if "success" not in data:
            return data
        if not data.get("success"):
            raise VideoChatRequestError(
                str(data.get("message") or data.get("detail") or f"Video chat backend rejected {method} {path}"),
                status_code=status_code,
                details=data,
            )
        inner = data.get("data")
        if inner is None:
            return {}
        if not isinstance(inner, dict):
            raise VideoChatRequestError(
                f"Video chat backend returned non-object data for {method} {path}",
                status_code=status_code,
            )
        return inner

    def _raise_request_error(self, resp: httpx.Response) -> None:
        details: dict[str, Any] | None = None
        message = f"Video chat request failed ({resp.status_code})"
        error_code: str | None = None
        request_id: str | None = None

        try:
            payload = resp.json()
        except ValueError:
            payload = None

        if isinstance(payload, dict):
            try:
                envelope = VideoChatErrorEnvelope.model_validate(payload)
            except ValidationError:
                envelope = None

            if envelope and envelope.error:
                if envelope.error.message:
                    message = envelope.error.message
                error_code = envelope.error.code
                request_id = envelope.error.request_id
                details = envelope.error.details
            else:
                details = payload
                if envelope and envelope.message:
                    message = envelope.message
                elif envelope and envelope.detail:
                    message = _format_detail(envelope.detail)

        error_cls = VideoChatRequestError
        if resp.status_code == 404:
            error_cls = NotFoundError
        elif resp.status_code == 429 or resp.status_code >= 500:
            error_cls = TransientIOError

        raise error_cls(
            message=message,
            status_code=resp.status_code,
            error_code=error_code,
            request_id=request_id,
            details=details,
        )

    def _parse_model(self, model_cls, payload: dict[str, Any], *, context: str):
        try:
            return model_cls.model_validate(payload)
        except ValidationError as exc:
            raise VideoChatRequestError(
                f"Video chat payload validation failed for {context}: {exc}",
                details={"payload": payload},
            ) from exc


def _format_detail(detail: Any) -> str:
    if isinstance(detail, str):
        return detail
    if isinstance(detail, list):
        parts: list[str] = []
        for entry in detail:
            if isinstance(entry, dict):
                loc = ".".join(str(item) for item in entry.get("loc") or [])
                parts.append(f"{loc}: {entry.get('msg')}" if loc else str(entry.get("msg")))
            else:
                parts.append(str(entry))
        return f"Validation error: {', '.join(parts)}"
    return str(detail)
