from fastapi import APIRouter, Depends, HTTPException, status

from adchat.domain.conversations import Conversation, ConversationSettings, OwnerScope
from adchat.domain.jobs import ArtifactScope
from adchat.runtime import VideoChatRuntime, get_runtime
from adchat.schemas.api import (
    ArtifactResponse,
    ConversationCreateRequest,
    ConversationResponse,
    GenerateRequest,
    JobResponse,
    MessageRequest,
    MessageResponse,
)
from adchat.services.generation_orchestrator import GenerationOutcome

router = APIRouter(prefix="/video-chat", tags=["video-chat"])


@router.post("/brands/{brand_id}/conversations", status_code=status.HTTP_201_CREATED)
def create_conversation(
    brand_id: str,
    payload: ConversationCreateRequest,
    runtime: VideoChatRuntime = Depends(get_runtime),
) -> ConversationResponse:
    try:
        settings = ConversationSettings().overlay(payload.settings_values())
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    conversation = runtime.controller.create(
        OwnerScope(brand_id=brand_id, product_id=payload.product_id),
        payload.reference_image_url,
        settings,
    )
    return ConversationResponse.from_conversation(runtime.remember(conversation))


@router.get("/brands/{brand_id}/conversations")
def list_conversations(
    brand_id: str,
    product_id: str | None = None,
    limit: int = 50,
    runtime: VideoChatRuntime = Depends(get_runtime),
) -> list[dict]:
    summaries = runtime.controller.list_conversations(
        OwnerScope(brand_id=brand_id, product_id=product_id),
        limit=limit,
    )
    return [summary.model_dump(mode="json") for summary in summaries]


@router.get("/brands/{brand_id}/conversations/{conversation_id}")
def resume_conversation(
    brand_id: str,
    conversation_id: str,
    product_id: str | None = None,
    runtime: VideoChatRuntime = Depends(get_runtime),
) -> ConversationResponse:
    conversation = runtime.resume(OwnerScope(brand_id=brand_id, product_id=product_id), conversation_id)
    return ConversationResponse.from_conversation(conversation)


@router.post("/brands/{brand_id}/conversations/{conversation_id}/messages")
def send_message(
    brand_id: str,
    conversation_id: str,
    payload: MessageRequest,
    product_id: str | None = None,
    runtime: VideoChatRuntime = Depends(get_runtime),
) -> MessageResponse:
    conversation = runtime.conversation(OwnerScope(brand_id=brand_id, product_id=product_id), conversation_id)
    reply = runtime.controller.send(conversation, payload.message)
    return MessageResponse.from_message(reply)


@router.post(
    "/brands/{brand_id}/conversations/{conversation_id}/generate",
    status_code=status.HTTP_202_ACCEPTED,
)
def generate_video(
    brand_id: str,
    conversation_id: str,
    payload: GenerateRequest,
    product_id: str | None = None,
    runtime: VideoChatRuntime = Depends(get_runtime),
) -> JobResponse:
    conversation = runtime.conversation(OwnerScope(brand_id=brand_id, product_id=product_id), conversation_id)
    job = runtime.orchestrator.generate(
        conversation,
        text=payload.text,
        fallback_reference_image_url=payload.fallback_reference_image_url,
    )
    runtime.orchestrator.watch(job, on_terminal=_record_latest_video(conversation))
    return JobResponse.from_job(job)


@router.get("/brands/{brand_id}/conversations/{conversation_id}/artifacts")
def list_artifacts(
    brand_id: str,
    conversation_id: str,
    product_id: str | None = None,
    runtime: VideoChatRuntime = Depends(get_runtime),
) -> list[ArtifactResponse]:
    artifacts = runtime.reconciler.pull(
        ArtifactScope(brand_id=brand_id, product_id=product_id, conversation_id=conversation_id)
    )
    return [ArtifactResponse.from_artifact(artifact) for artifact in artifacts]


@router.delete("/brands/{brand_id}/conversations/{conversation_id}/watch")
def close_conversation(
    brand_id: str,
    conversation_id: str,
    runtime: VideoChatRuntime = Depends(get_runtime),
) -> dict[str, int]:
    cancelled = runtime.orchestrator.close(conversation_id)
    runtime.forget(conversation_id)
    return {"cancelled": cancelled}


@router.get("/jobs/{job_id}")
def get_job(job_id: str, runtime: VideoChatRuntime = Depends(get_runtime)) -> JobResponse:
    job = runtime.orchestrator.job(job_id)
    if job is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Job not found")
    return JobResponse.from_job(job)


def _record_latest_video(conversation: Conversation):
    def on_terminal(outcome: GenerationOutcome) -> None:
        latest = next((artifact for artifact in outcome.artifacts if artifact.is_latest), None)
        if latest is not None:
            conversation.last_video_url = latest.url

    return on_terminal
