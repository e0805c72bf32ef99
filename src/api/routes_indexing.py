"""
Indexing tracker API:
POST /indexing/project-id, POST /indexing/start, GET /indexing/states,
GET/DELETE /indexing/{project_id}, POST /indexing/{project_id}/cancel,
GET /indexing/{project_id}/stream (SSE)
"""

import asyncio
import json

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import StreamingResponse

from src.api.schemas import (
    CancelResponse,
    IndexingStateListResponse,
    IndexingStateResponse,
    ProjectIdRequest,
    ProjectIdResponse,
    StartIndexingRequest,
)
from src.indexing.errors import StateStoreError, TrackerBusyError
from src.indexing.events import is_terminal_event
from src.indexing.project_id import normalize_project_id
from src.indexing.tracker import IndexingTracker
from src.observability import metrics

router = APIRouter(prefix="/indexing", tags=["indexing"])

SSE_KEEPALIVE_SECONDS = 15.0


def get_tracker(request: Request) -> IndexingTracker:
    tracker = getattr(request.app.state, "tracker", None)
    if tracker is None:
        raise HTTPException(status_code=503, detail="Indexing tracker not initialized")
    return tracker


def _sse(event_type: str, data: dict) -> str:
    return f"event: {event_type}\ndata: {json.dumps(data, ensure_ascii=False, default=str)}\n\n"


@router.post("/project-id", response_model=ProjectIdResponse)
def project_id_for_name(body: ProjectIdRequest):
    """Normalized project id the backend uses for this name."""
    try:
        return ProjectIdResponse(project_id=normalize_project_id(body.project_name))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.post("/start", response_model=IndexingStateResponse, status_code=202)
async def start_indexing(body: StartIndexingRequest, tracker: IndexingTracker = Depends(get_tracker)):
    """Start the job; progress continues in the background."""
    try:
        state = await tracker.start(body.project_name, project_id=body.project_id)
    except TrackerBusyError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except StateStoreError as e:
        raise HTTPException(status_code=503, detail=f"State store unavailable: {e}")
    return IndexingStateResponse.from_state(state, is_tracking=True)


@router.get("/states", response_model=IndexingStateListResponse)
def list_states(tracker: IndexingTracker = Depends(get_tracker)):
    """Running jobs, failures not yet dismissed, and recent completions."""
    try:
        states = tracker.list_states()
    except StateStoreError as e:
        raise HTTPException(status_code=503, detail=f"State store unavailable: {e}")
    items = [IndexingStateResponse.from_state(s, tracker.is_tracking(s.project_id)) for s in states]
    return IndexingStateListResponse(states=items, active_count=len(tracker.active_project_ids))


@router.get("/{project_id}", response_model=IndexingStateResponse)
def get_state(project_id: str, tracker: IndexingTracker = Depends(get_tracker)):
    try:
        state = tracker.get_state(project_id)
    except StateStoreError as e:
        raise HTTPException(status_code=503, detail=f"State store unavailable: {e}")
    if state is None:
        raise HTTPException(status_code=404, detail=f"No indexing state for project {project_id}")
    return IndexingStateResponse.from_state(state, tracker.is_tracking(project_id))


@router.post("/{project_id}/cancel", response_model=CancelResponse)
async def cancel_indexing(project_id: str, tracker: IndexingTracker = Depends(get_tracker)):
    """Cancel a running job; a job that already finished is reported, not an error."""
    if await tracker.cancel(project_id):
        return CancelResponse(success=True, message="Indexing cancelled")
    return CancelResponse(success=False, message="Indexing is not running for this project")


@router.delete("/{project_id}")
def dismiss_state(project_id: str, tracker: IndexingTracker = Depends(get_tracker)):
    """Forget a finished job's state."""
    try:
        deleted = tracker.dismiss(project_id)
    except TrackerBusyError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except StateStoreError as e:
        raise HTTPException(status_code=503, detail=f"State store unavailable: {e}")
    if not deleted:
        raise HTTPException(status_code=404, detail=f"No indexing state for project {project_id}")
    return {"success": True, "project_id": project_id}


async def _indexing_event_stream(tracker: IndexingTracker, project_id: str):
    """Current snapshot first, then live events until a terminal one.

    The subscription opens before the snapshot is read so nothing published
    in between is lost; duplicates are harmless to clients.
    """
    metrics.active_connections.inc()
    try:
        async with tracker.bus.subscribe(project_id) as sub:
            state = await asyncio.to_thread(tracker.get_state, project_id)
            if state is not None:
                yield _sse("state", state.to_dict())
                if state.is_terminal() or not tracker.is_tracking(project_id):
                    return
            while True:
                try:
                    event = await asyncio.wait_for(sub.get(), timeout=SSE_KEEPALIVE_SECONDS)
                except asyncio.TimeoutError:
                    yield ": keepalive\n\n"
                    continue
                yield _sse(event.type, event.to_dict())
                if is_terminal_event(event):
                    return
    finally:
        metrics.active_connections.dec()


@router.get("/{project_id}/stream")
def stream_indexing(project_id: str, tracker: IndexingTracker = Depends(get_tracker)):
    """SSE progress stream for one project."""
    if tracker.get_state(project_id) is None and not tracker.is_tracking(project_id):
        raise HTTPException(status_code=404, detail=f"No indexing state for project {project_id}")
    return StreamingResponse(_indexing_event_stream(tracker, project_id), media_type="text/event-stream")
