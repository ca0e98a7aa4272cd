"""Detached execution of the clustering and alerting pipeline."""

import asyncio
import logging
from typing import Awaitable, Callable, Optional, Set
from uuid import UUID

from safewatch.core.exceptions import AlertPipelineError
from safewatch.repositories.base import StoreProvider
from safewatch.schemas.alert import AlertRecord
from safewatch.services.alert_synthesizer import AlertSynthesizer
from safewatch.services.cluster_detector import ClusterDetector

logger = logging.getLogger(__name__)


class TaskScheduler:
    """
    Runs coroutines as background tasks and keeps a handle on each one.

    The event loop only holds weak references to tasks, so the scheduler
    keeps them alive until they finish. ``drain`` waits for everything
    scheduled so far, which gives tests and shutdown a deterministic point
    where all side effects are visible.
    """

    def __init__(self):
        self._tasks: Set[asyncio.Task] = set()

    def schedule(self, factory: Callable[[], Awaitable[None]], name: Optional[str] = None) -> asyncio.Task:
        task = asyncio.create_task(factory(), name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


class AlertDispatcher:
    """
    Fire-and-forget entry point for cluster detection after a report is
    created or newly verified.

    Each run opens its own unit of work and reloads the report, so it sees
    committed state and never shares a transaction with the request that
    triggered it. Failures are logged and swallowed.
    """

    def __init__(
        self,
        stores: StoreProvider,
        detector: ClusterDetector,
        synthesizer: AlertSynthesizer,
        scheduler: Optional[TaskScheduler] = None,
        timeout_seconds: float = 10.0,
    ):
        self.stores = stores
        self.detector = detector
        self.synthesizer = synthesizer
        self.scheduler = scheduler or TaskScheduler()
        self.timeout_seconds = timeout_seconds

    def dispatch(self, report_id: UUID) -> asyncio.Task:
        """Schedule a pipeline run and return without waiting for it."""
        return self.scheduler.schedule(
            lambda: self.run_safely(report_id),
            name=f"alert-pipeline-{report_id}",
        )

    async def drain(self) -> None:
        await self.scheduler.drain()

    async def run_safely(self, report_id: UUID) -> Optional[AlertRecord]:
        try:
            return await asyncio.wait_for(self.run(report_id), timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            logger.error(
                f"Alert pipeline for report {report_id} timed out after {self.timeout_seconds}s"
            )
        except Exception:
            logger.exception(f"Alert pipeline failed for report {report_id}")
        return None

    async def run(self, report_id: UUID) -> Optional[AlertRecord]:
        """Detect the report's cluster and apply it to the alert set."""
        async with self.stores.session() as stores:
            report = await stores.reports.get(report_id)
            if report is None:
                raise AlertPipelineError(f"Report {report_id} disappeared before clustering")

            cluster = await self.detector.find_cluster(stores.reports, report)
            if not self.detector.meets_threshold(cluster):
                return None

            return await self.synthesizer.synthesize(stores.alerts, report, cluster)
