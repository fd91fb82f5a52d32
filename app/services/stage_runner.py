"""
Stage Runner - executes pipeline stages scheduled as background tasks.

Each trigger request schedules one stage. The runner bounds how many stages
run at once, records their status in memory for diagnostics, writes the
completion marker after a stage succeeds and notifies the optional callback.
"""

import asyncio
import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

from app.config import get_settings
from app.services.completion_signal import CompletionSignal
from app.services.webhook_service import WebhookService, get_webhook_service

logger = logging.getLogger(__name__)

StageWork = Callable[[], Awaitable[Optional[dict[str, Any]]]]


class StageStatus(str, Enum):
    """Status of a scheduled stage."""

    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class StageRecord:
    """In-memory status of one unit of work."""

    video_id: str
    stage: str
    unit: str
    status: StageStatus = StageStatus.QUEUED
    error: Optional[str] = None
    output: Optional[dict[str, Any]] = None
    updated_at: str = field(default_factory=_now)

    def update(self, status: StageStatus, **changes: Any) -> None:
        self.status = status
        for name, value in changes.items():
            setattr(self, name, value)
        self.updated_at = _now()


class StageRunner:
    """
    Runs stages under a process-wide concurrency limit.

    Status is kept in memory only (lost on restart) for the most recently
    touched jobs; the completion markers in durable storage are the
    authoritative record.
    """

    def __init__(
        self,
        max_concurrent: Optional[int] = None,
        signal: Optional[CompletionSignal] = None,
        webhooks: Optional[WebhookService] = None,
        max_jobs: Optional[int] = None,
    ):
        settings = get_settings()
        limit = max_concurrent or settings.max_concurrent_stages
        self.max_jobs = max_jobs or settings.stage_history_max_jobs
        self._semaphore = asyncio.Semaphore(limit)
        self._signal = signal
        self._webhooks = webhooks
        self._records: OrderedDict[str, dict[str, StageRecord]] = OrderedDict()
        logger.info(f"Stage runner ready (max concurrent stages: {limit})")

    @property
    def signal(self) -> CompletionSignal:
        if self._signal is None:
            self._signal = CompletionSignal()
        return self._signal

    @property
    def webhooks(self) -> WebhookService:
        if self._webhooks is None:
            self._webhooks = get_webhook_service()
        return self._webhooks

    def enqueue(self, video_id: str, stage: str, unit: str) -> StageRecord:
        """Record a stage as queued before it is handed to the background task."""
        record = StageRecord(video_id=video_id, stage=stage, unit=unit)
        self._records.setdefault(video_id, {})[unit] = record
        self._records.move_to_end(video_id)
        while len(self._records) > self.max_jobs:
            evicted, _ = self._records.popitem(last=False)
            logger.debug(f"Dropped stage history for {evicted}")
        return record

    def get_job(self, video_id: str) -> list[StageRecord]:
        return list(self._records.get(video_id, {}).values())

    async def run(
        self,
        video_id: str,
        stage: str,
        unit: str,
        work: StageWork,
        callback_url: Optional[str] = None,
    ) -> StageRecord:
        """
        Execute one stage.

        The marker is written only after ``work`` returns. Failures are logged,
        recorded and reported to the callback, never raised to the caller.
        """
        record = self._records.get(video_id, {}).get(unit) or self.enqueue(video_id, stage, unit)

        async with self._semaphore:
            record.update(StageStatus.RUNNING)
            logger.info(f"[{stage}] {video_id}/{unit}: started")

            try:
                output = await work()
                await self.signal.mark_done(video_id, unit)
            except Exception as e:
                logger.exception(f"[{stage}] {video_id}/{unit}: failed: {e}")
                record.update(StageStatus.FAILED, error=str(e))
                await self._notify(callback_url, "stage.failed", record)
                return record

            record.update(StageStatus.COMPLETED, output=output, error=None)
            logger.info(f"[{stage}] {video_id}/{unit}: completed")
            await self._notify(callback_url, "stage.completed", record)
            return record

    async def _notify(self, callback_url: Optional[str], event: str, record: StageRecord) -> None:
        if not callback_url:
            return
        payload = self.webhooks.build_payload(
            event=event,
            video_id=record.video_id,
            stage=record.stage,
            unit=record.unit,
            status=record.status.value,
            error=record.error,
            output=record.output,
        )
        await self.webhooks.send(callback_url, payload)
