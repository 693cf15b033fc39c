"""
Session and sync API router.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status

from bizadvisor.api.dependencies import (
    get_dialogue_service,
    get_offline_queue,
    get_sync_coordinator,
)
from bizadvisor.api.schemas import (
    ConnectivityUpdate,
    DeadLetterResponse,
    DecisionResponse,
    FeedbackCreate,
    FeedbackResponse,
    NoticeResponse,
    RedriveRequest,
    RedriveResponse,
    SessionCreate,
    SessionResponse,
    SyncStatusResponse,
    UtteranceCreate,
)
from bizadvisor.dialogue.service import DialogueService
from bizadvisor.offline.queue import OfflineQueue
from bizadvisor.shared.logging import get_logger
from bizadvisor.sync.coordinator import SyncCoordinator

logger = get_logger(__name__)

router = APIRouter(prefix="/api", tags=["advisor"])


@router.post(
    "/sessions",
    response_model=SessionResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_session(
    body: SessionCreate,
    service: Annotated[DialogueService, Depends(get_dialogue_service)],
) -> SessionResponse:
    """Start a session, seeded from the user's most recent closed session."""
    context = await service.start_session(body.user_id)
    return SessionResponse.from_context(context, service.missing_fields(context))


@router.get("/sessions/{session_id}", response_model=SessionResponse)
async def get_session(
    session_id: str,
    service: Annotated[DialogueService, Depends(get_dialogue_service)],
) -> SessionResponse:
    context = await service.get_session_state(session_id)
    return SessionResponse.from_context(context, service.missing_fields(context))


@router.post(
    "/sessions/{session_id}/utterances",
    response_model=DecisionResponse,
    responses={
        404: {"description": "Session not found"},
        507: {"description": "Local storage full"},
    },
)
async def submit_utterance(
    session_id: str,
    body: UtteranceCreate,
    service: Annotated[DialogueService, Depends(get_dialogue_service)],
) -> DecisionResponse:
    """Process one user turn.

    Returns the next question, a clarification, or business guidance. If the
    session had ended, the reply carries the new session id and
    ``rotated_from``.
    """
    decision = await service.submit_utterance(
        session_id,
        text=body.text,
        audio=body.audio_bytes(),
    )
    return DecisionResponse.model_validate(decision.to_dict())


@router.post(
    "/sessions/{session_id}/feedback",
    response_model=FeedbackResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def submit_feedback(
    session_id: str,
    body: FeedbackCreate,
    service: Annotated[DialogueService, Depends(get_dialogue_service)],
) -> FeedbackResponse:
    item_id, notices = await service.submit_feedback(session_id, body.rating, body.comment)
    return FeedbackResponse(
        item_id=item_id,
        notices=[NoticeResponse.model_validate(n.to_dict()) for n in notices],
    )


@router.post("/sessions/{session_id}/close", response_model=SessionResponse)
async def close_session(
    session_id: str,
    service: Annotated[DialogueService, Depends(get_dialogue_service)],
) -> SessionResponse:
    context = await service.close_session(session_id)
    return SessionResponse.from_context(context, service.missing_fields(context))


@router.get("/sync/status", response_model=SyncStatusResponse)
async def get_sync_status(
    coordinator: Annotated[SyncCoordinator, Depends(get_sync_coordinator)],
) -> SyncStatusResponse:
    sync_status = await coordinator.get_sync_status()
    return SyncStatusResponse.model_validate(sync_status.to_dict())


@router.post("/sync/connectivity", response_model=SyncStatusResponse)
async def report_connectivity(
    body: ConnectivityUpdate,
    coordinator: Annotated[SyncCoordinator, Depends(get_sync_coordinator)],
) -> SyncStatusResponse:
    """Feed the device's reachability signal into the sync state machine."""
    logger.info("Connectivity signal received", extra={"online": body.online})
    await coordinator.on_connectivity_change(body.online)
    sync_status = await coordinator.get_sync_status()
    return SyncStatusResponse.model_validate(sync_status.to_dict())


@router.get("/sync/dead-letters", response_model=list[DeadLetterResponse])
async def list_dead_letters(
    queue: Annotated[OfflineQueue, Depends(get_offline_queue)],
) -> list[DeadLetterResponse]:
    items = await queue.list_dead_letters()
    return [
        DeadLetterResponse(
            id=item.id,
            type=item.type.value,
            session_id=item.session_id,
            retry_count=item.retry_count,
            last_error=item.last_error,
            timestamp=item.timestamp,
        )
        for item in items
    ]


@router.post("/sync/dead-letters/redrive", response_model=RedriveResponse)
async def redrive_dead_letters(
    body: RedriveRequest,
    queue: Annotated[OfflineQueue, Depends(get_offline_queue)],
    coordinator: Annotated[SyncCoordinator, Depends(get_sync_coordinator)],
) -> RedriveResponse:
    """Return dead-lettered items to the queue (the user's "retry" option)."""
    if body.item_ids is not None and not body.item_ids:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"code": "NO_ITEMS", "message": "item_ids must not be empty"},
        )
    redriven = await queue.redrive(body.item_ids)
    logger.info("Dead letters redriven", extra={"count": redriven})
    coordinator.sync_now()
    return RedriveResponse(redriven=redriven)
