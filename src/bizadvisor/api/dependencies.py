"""
Service wiring for the HTTP surface.

One container per application holds the store, queue, coordinator and
dialogue service; route dependencies read it from ``app.state``.
"""

from dataclasses import dataclass
from typing import Annotated

from fastapi import Depends, Request

from bizadvisor.advisor.factory import create_advisor_from_settings
from bizadvisor.advisor.gateway import BusinessAdvisor
from bizadvisor.config import Settings, get_settings
from bizadvisor.context.merger import ContextMerger
from bizadvisor.context.store import ContextStore
from bizadvisor.context.sweeper import SessionSweeper
from bizadvisor.dialogue.policy import DialoguePolicy
from bizadvisor.dialogue.service import DialogueService
from bizadvisor.dialogue.speech import SpeechToText, TextToSpeech
from bizadvisor.extraction.extractor import ExtractorProtocol, RuleBasedExtractor
from bizadvisor.offline.queue import OfflineQueue
from bizadvisor.shared.clock import Clock, utc_now
from bizadvisor.shared.database import DatabaseManager
from bizadvisor.sync.coordinator import SyncCoordinator
from bizadvisor.sync.cursor import SyncCursorStore
from bizadvisor.sync.endpoint import HttpSyncEndpoint, SyncEndpoint


@dataclass
class ServiceContainer:
    db: DatabaseManager
    store: ContextStore
    queue: OfflineQueue
    coordinator: SyncCoordinator
    sweeper: SessionSweeper
    service: DialogueService
    endpoint: SyncEndpoint


def build_container(
    settings: Settings | None = None,
    db: DatabaseManager | None = None,
    endpoint: SyncEndpoint | None = None,
    advisor: BusinessAdvisor | None = None,
    extractor: ExtractorProtocol | None = None,
    stt: SpeechToText | None = None,
    tts: TextToSpeech | None = None,
    clock: Clock = utc_now,
) -> ServiceContainer:
    """Build every collaborator from settings; any of them may be injected."""
    settings = settings or get_settings()
    db = db or DatabaseManager(settings.database_url)

    merger = ContextMerger(confidence_floor=settings.entity_confidence_floor)
    store = ContextStore(
        db,
        merger=merger,
        clock=clock,
        session_timeout_seconds=settings.session_timeout_seconds,
    )
    queue = OfflineQueue(db, max_items=settings.offline_queue_max_items, clock=clock)
    endpoint = endpoint or HttpSyncEndpoint(
        settings.sync_endpoint_url,
        api_key=settings.sync_api_key,
        device_id=settings.device_id,
        timeout_seconds=settings.sync_http_timeout_seconds,
    )
    coordinator = SyncCoordinator(
        queue,
        store,
        endpoint,
        SyncCursorStore(db, clock=clock),
        batch_size=settings.sync_batch_size,
        max_attempts=settings.sync_max_attempts,
        backoff_base_seconds=settings.sync_backoff_base_seconds,
        reachability_timeout_seconds=settings.sync_reachability_timeout_seconds,
        clock=clock,
    )
    service = DialogueService(
        store=store,
        extractor=extractor or RuleBasedExtractor(clock=clock),
        policy=DialoguePolicy(
            max_declines=settings.max_declines_per_field,
            confidence_floor=settings.entity_confidence_floor,
        ),
        queue=queue,
        coordinator=coordinator,
        advisor=advisor or create_advisor_from_settings(settings),
        stt=stt,
        tts=tts,
        stt_min_confidence=settings.stt_min_confidence,
        clock=clock,
    )
    return ServiceContainer(
        db=db,
        store=store,
        queue=queue,
        coordinator=coordinator,
        sweeper=SessionSweeper(store, interval_seconds=settings.session_sweep_interval_seconds),
        service=service,
        endpoint=endpoint,
    )


def get_container(request: Request) -> ServiceContainer:
    return request.app.state.container


def get_dialogue_service(
    container: Annotated[ServiceContainer, Depends(get_container)],
) -> DialogueService:
    """Dependency for the dialogue service."""
    return container.service


def get_sync_coordinator(
    container: Annotated[ServiceContainer, Depends(get_container)],
) -> SyncCoordinator:
    return container.coordinator


def get_offline_queue(
    container: Annotated[ServiceContainer, Depends(get_container)],
) -> OfflineQueue:
    return container.queue
