from fastapi import APIRouter, Depends, HTTPException, status

from adchat.runtime import VideoChatRuntime, get_runtime
from adchat.schemas.api import NotificationResponse, TrackJobRequest, TrackedJobResponse

router = APIRouter(prefix="/jobs", tags=["jobs"])


@router.post("/track", status_code=status.HTTP_202_ACCEPTED)
def track_job(payload: TrackJobRequest, runtime: VideoChatRuntime = Depends(get_runtime)) -> TrackedJobResponse:
    tracked = runtime.notifications.track_job(payload.job_id, payload.job_type, payload.metadata)
    return TrackedJobResponse.from_tracked(tracked)


@router.get("/active")
def list_active_jobs(runtime: VideoChatRuntime = Depends(get_runtime)) -> list[TrackedJobResponse]:
    runtime.notifications.prune_stale()
    return [TrackedJobResponse.from_tracked(tracked) for tracked in runtime.notifications.active_jobs()]


@router.delete("/active/{job_id}")
def stop_tracking(job_id: str, runtime: VideoChatRuntime = Depends(get_runtime)) -> dict[str, bool]:
    if not runtime.notifications.remove_job(job_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Job is not tracked")
    return {"ok": True}


@router.get("/notifications")
def list_notifications(runtime: VideoChatRuntime = Depends(get_runtime)) -> list[NotificationResponse]:
    return [NotificationResponse.from_notification(item) for item in runtime.notifications.notifications()]


@router.delete("/notifications/{notification_id}")
def dismiss_notification(notification_id: str, runtime: VideoChatRuntime = Depends(get_runtime)) -> dict[str, bool]:
    if not runtime.notifications.dismiss(notification_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Notification not found")
    return {"ok": True}
