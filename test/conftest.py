"""
Shared fixtures: a movable clock, a throwaway SQLite store and the mock
collaborators wired the way the application wires them.
"""
from __future__ import annotations

from collections.abc import AsyncGenerator
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
import pytest_asyncio

from bizadvisor.advisor.mock import MockBusinessAdvisor
from bizadvisor.context.merger import ContextMerger
from bizadvisor.context.store import ContextStore
from bizadvisor.dialogue.policy import DialoguePolicy
from bizadvisor.dialogue.service import DialogueService
from bizadvisor.dialogue.speech import Transcription
from bizadvisor.extraction.extractor import RuleBasedExtractor
from bizadvisor.offline.queue import OfflineQueue
from bizadvisor.shared.database import DatabaseManager
from bizadvisor.shared.exceptions import SpeechUnavailableError
from bizadvisor.sync.coordinator import SyncCoordinator
from bizadvisor.sync.cursor import SyncCursorStore
from bizadvisor.sync.mock_endpoint import MockSyncEndpoint

START = datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)


class FakeClock:
    """Clock that only moves when told to."""

    def __init__(self, start: datetime = START) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float = 0.0, minutes: float = 0.0) -> datetime:
        self.now = self.now + timedelta(seconds=seconds, minutes=minutes)
        return self.now


class RecordingSleep:
    """Stands in for asyncio.sleep and records requested delays."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@dataclass
class FakeSpeechToText:
    """Scriptable STT engine."""

    transcription: Transcription = field(
        default_factory=lambda: Transcription(text="I sell tea", confidence=0.95)
    )
    available: bool = True
    calls: int = 0

    async def transcribe(self, audio: bytes) -> Transcription:
        self.calls += 1
        if not self.available:
            raise SpeechUnavailableError("STT engine offline")
        return self.transcription


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest_asyncio.fixture
async def db_manager(tmp_path: Path) -> AsyncGenerator[DatabaseManager, None]:
    """File-backed SQLite database with every table created."""
    manager = DatabaseManager(f"sqlite+aiosqlite:///{tmp_path / 'bizadvisor-test.db'}", echo=False)
    await manager.create_all()
    yield manager
    await manager.close()


@pytest.fixture
def merger() -> ContextMerger:
    return ContextMerger()


@pytest.fixture
def store(db_manager: DatabaseManager, merger: ContextMerger, clock: FakeClock) -> ContextStore:
    return ContextStore(db_manager, merger=merger, clock=clock, session_timeout_seconds=30 * 60)


@pytest.fixture
def queue(db_manager: DatabaseManager, clock: FakeClock) -> OfflineQueue:
    return OfflineQueue(db_manager, max_items=50, clock=clock)


@pytest.fixture
def extractor(clock: FakeClock) -> RuleBasedExtractor:
    return RuleBasedExtractor(clock=clock)


@pytest.fixture
def endpoint() -> MockSyncEndpoint:
    return MockSyncEndpoint()


@pytest.fixture
def advisor() -> MockBusinessAdvisor:
    return MockBusinessAdvisor()


@pytest.fixture
def stt() -> FakeSpeechToText:
    return FakeSpeechToText()


@pytest.fixture
def coordinator(
    db_manager: DatabaseManager,
    queue: OfflineQueue,
    store: ContextStore,
    endpoint: MockSyncEndpoint,
    sleep: RecordingSleep,
    clock: FakeClock,
) -> SyncCoordinator:
    return SyncCoordinator(
        queue,
        store,
        endpoint,
        SyncCursorStore(db_manager, clock=clock),
        batch_size=20,
        max_attempts=3,
        backoff_base_seconds=1.0,
        reachability_timeout_seconds=0.5,
        sleep=sleep,
        clock=clock,
    )


@pytest.fixture
def service(
    store: ContextStore,
    extractor: RuleBasedExtractor,
    queue: OfflineQueue,
    coordinator: SyncCoordinator,
    advisor: MockBusinessAdvisor,
    stt: FakeSpeechToText,
    clock: FakeClock,
) -> DialogueService:
    return DialogueService(
        store=store,
        extractor=extractor,
        policy=DialoguePolicy(),
        queue=queue,
        coordinator=coordinator,
        advisor=advisor,
        stt=stt,
        stt_min_confidence=0.7,
        clock=clock,
    )
