"""
Timer-driven scheduler that runs each pipeline at its next update time,
retrying failed runs with exponential backoff.
"""

import asyncio
from datetime import datetime
from typing import Callable, Dict, List, Optional, Set

from shared.cache.redis_cache import RedisVersionStore
from shared.schemas.pipeline import (
    DataUpdateEvent,
    DataUpdatePipeline,
    PipelineExecutionResult,
    SchedulerStatus,
)
from shared.utils.configs import redis_config
from shared.utils.errors import PipelineAlreadyRunningError, PipelineNotFoundError
from shared.utils.helpers import utc_now
from shared.utils.logger import logger
from shared.utils.types import DataUpdateEventType, PipelineStatus

from .config import ConfigurationFactory
from .notifications import NotificationDispatcher
from .service import ScheduledDataService
from .versioning import DataVersionService

MAX_BACKOFF_SECONDS = 30


class UpdateScheduler:
    """
    Arms one timer per pipeline and runs the pipeline when it fires.

    At most `max_concurrent_pipelines` executions run at the same time;
    further executions wait for a free slot.
    """

    def __init__(
        self,
        config_factory: Optional[ConfigurationFactory] = None,
        data_service: Optional[ScheduledDataService] = None,
        notifier: Optional[NotificationDispatcher] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.config_factory = config_factory or ConfigurationFactory()
        self.config = self.config_factory.create_configuration()
        self.clock = clock

        if data_service is None:
            store = RedisVersionStore() if redis_config["enabled"] else None
            data_service = ScheduledDataService(DataVersionService(store=store), clock=clock)
        self.data_service = data_service
        self.notifier = notifier or NotificationDispatcher(self.config.notifications)

        self.timers: Dict[str, asyncio.TimerHandle] = {}
        self.is_running = False
        self.is_initialized = False
        self.start_time: Optional[datetime] = None
        self._semaphore = asyncio.Semaphore(max(1, self.config.max_concurrent_pipelines))
        self._tasks: Set[asyncio.Task] = set()
        # Ids queued for an execution slot, and ids inside a retry loop
        self._pending: Set[str] = set()
        self._retrying: Set[str] = set()

        self._setup_event_listeners()

    def _setup_event_listeners(self) -> None:
        self.data_service.add_event_listener(
            DataUpdateEventType.PIPELINE_COMPLETED, self.notifier.notify_success
        )
        self.data_service.add_event_listener(
            DataUpdateEventType.PIPELINE_FAILED, self._log_pipeline_failure
        )
        self.data_service.add_event_listener(
            DataUpdateEventType.QUOTA_WARNING, self.notifier.notify_quota_warning
        )
        self.data_service.add_event_listener(
            DataUpdateEventType.QUOTA_EXCEEDED, self._log_quota_exceeded
        )

    def _log_pipeline_failure(self, event: DataUpdateEvent) -> None:
        logger.error(f"Pipeline {event.pipeline_id} attempt failed: {event.data.get('error')}")

    def _log_quota_exceeded(self, event: DataUpdateEvent) -> None:
        logger.warning(
            f"Quota exceeded for {event.data.get('provider')}, "
            f"resets at {event.data.get('reset_time')}"
        )

    def initialize(self) -> None:
        """Build the pipelines from configuration. Safe to call more than once."""
        if self.is_initialized:
            return
        self.data_service.version_service.load_from_store()
        configurations = self.config_factory.build_pipeline_configurations()
        self.data_service.initialize_pipelines(configurations)
        self.is_initialized = True
        logger.info(
            f"Initialized {len(configurations)} pipelines for {self.config.environment}"
        )

    async def start(self) -> None:
        if self.is_running:
            logger.info("Update scheduler is already running")
            return

        self.initialize()
        self.is_running = True
        self.start_time = self.clock()
        for pipeline in self.data_service.get_all_pipelines():
            self.schedule_pipeline(pipeline)
        logger.info(
            f"Update scheduler started with {len(self.timers)} pipelines, "
            f"max {self.config.max_concurrent_pipelines} concurrent"
        )

    def stop(self) -> None:
        """
        Cancel every armed timer. Executions already in flight run to
        completion but are not retried or rescheduled.
        """
        for handle in self.timers.values():
            handle.cancel()
        self.timers.clear()
        self.is_running = False
        logger.info("Update scheduler stopped")

    def _cancel_timer(self, pipeline_id: str) -> None:
        handle = self.timers.pop(pipeline_id, None)
        if handle is not None:
            handle.cancel()

    def schedule_pipeline(self, pipeline: DataUpdatePipeline) -> None:
        """
        Arm the timer for the pipeline's next update, replacing any armed timer.
        Does nothing while the scheduler is stopped.
        """
        self._cancel_timer(pipeline.id)
        if not self.is_running:
            return

        if pipeline.next_update is None:
            strategy = self.data_service.strategy_for(pipeline)
            pipeline.next_update = strategy.get_next_update_time(
                pipeline.last_update, pipeline.frequency, now=self.clock()
            )

        delay = max(0.0, (pipeline.next_update - self.clock()).total_seconds())
        loop = asyncio.get_running_loop()
        self.timers[pipeline.id] = loop.call_later(delay, self._on_timer, pipeline.id)

        # A failed pipeline keeps its status until it runs again
        if pipeline.status in (PipelineStatus.IDLE, PipelineStatus.COMPLETED):
            pipeline.status = PipelineStatus.SCHEDULED
        logger.info(
            f"Scheduled {pipeline.id} for {pipeline.next_update.isoformat()} "
            f"(in {delay:.0f}s)"
        )

    def reschedule_pipeline(self, pipeline_id: str) -> None:
        pipeline = self.data_service.get_pipeline(pipeline_id)
        if pipeline is not None:
            self.schedule_pipeline(pipeline)

    def _on_timer(self, pipeline_id: str) -> None:
        self.timers.pop(pipeline_id, None)
        if not self.is_running:
            return
        task = asyncio.ensure_future(self._run_scheduled(pipeline_id))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def is_busy(self, pipeline: DataUpdatePipeline) -> bool:
        """Whether the pipeline is running, waiting for a slot or between retries."""
        return (
            pipeline.status == PipelineStatus.RUNNING
            or pipeline.id in self._pending
            or pipeline.id in self._retrying
        )

    async def _run_scheduled(self, pipeline_id: str) -> None:
        pipeline = self.data_service.get_pipeline(pipeline_id)
        if pipeline is None:
            return
        if self.is_busy(pipeline):
            logger.warning(f"Pipeline {pipeline_id} is still running, skipping this cycle")
            # Move past the missed cycle so the timer is not re-armed as already due
            pipeline.next_update = self.data_service.strategy_for(pipeline).get_next_update_time(
                pipeline.last_update, pipeline.frequency, now=self.clock()
            )
            self.reschedule_pipeline(pipeline_id)
            return
        await self.execute_pipeline_with_retry(pipeline)

    async def _execute(self, pipeline_id: str) -> PipelineExecutionResult:
        self._pending.add(pipeline_id)
        try:
            async with self._semaphore:
                return await self.data_service.execute_pipeline(pipeline_id)
        finally:
            self._pending.discard(pipeline_id)

    async def execute_pipeline_with_retry(
        self, pipeline: DataUpdatePipeline
    ) -> Optional[PipelineExecutionResult]:
        """
        Run a pipeline, retrying up to `max_retries` attempts with backoff of
        min(2**attempt, 30) seconds. Exhausted retries are notified, never
        raised; the pipeline is rescheduled for its next natural cycle either way.

        Returns:
            The result of the successful attempt, or None
        """
        max_attempts = max(1, pipeline.config.max_retries)
        result = None
        last_error: Optional[Exception] = None

        self._retrying.add(pipeline.id)
        try:
            for attempt in range(max_attempts):
                try:
                    result = await self._execute(pipeline.id)
                    last_error = None
                    break
                except Exception as e:
                    last_error = e
                    logger.warning(
                        f"Pipeline {pipeline.id} attempt {attempt + 1}/{max_attempts} failed: {e}"
                    )
                    if attempt < max_attempts - 1 and self.is_running:
                        await asyncio.sleep(min(2**attempt, MAX_BACKOFF_SECONDS))
                    elif not self.is_running:
                        break
        finally:
            self._retrying.discard(pipeline.id)

        if last_error is not None:
            logger.error(f"Pipeline {pipeline.id} failed after retries: {last_error}")
            await self.notifier.notify_failure(pipeline, last_error)

        self.reschedule_pipeline(pipeline.id)
        return result

    async def execute_now(self, pipeline_id: str) -> PipelineExecutionResult:
        """
        Run a pipeline immediately, outside its schedule.

        Raises:
            PipelineNotFoundError: If the id is unknown
            PipelineAlreadyRunningError: If the pipeline is running or queued
            Exception: Whatever the execution raised
        """
        pipeline = self.data_service.get_pipeline(pipeline_id)
        if pipeline is None:
            raise PipelineNotFoundError(pipeline_id)
        if self.is_busy(pipeline):
            raise PipelineAlreadyRunningError(pipeline_id)

        logger.info(f"Manually executing pipeline {pipeline_id}")
        try:
            return await self._execute(pipeline_id)
        finally:
            self.reschedule_pipeline(pipeline_id)

    def get_status(self) -> SchedulerStatus:
        pipelines = self.data_service.get_all_pipelines()
        by_status = {status.value: 0 for status in PipelineStatus}
        for pipeline in pipelines:
            by_status[pipeline.status.value] += 1

        upcoming = [p.next_update for p in pipelines if p.next_update is not None]
        uptime = 0.0
        if self.is_running and self.start_time is not None:
            uptime = (self.clock() - self.start_time).total_seconds()

        return SchedulerStatus(
            is_running=self.is_running,
            environment=self.config.environment,
            total_pipelines=len(pipelines),
            pipelines_by_status=by_status,
            next_scheduled_update=min(upcoming) if upcoming else None,
            uptime=uptime,
        )

    def get_pipeline_status(self, pipeline_id: str) -> Optional[DataUpdatePipeline]:
        return self.data_service.get_pipeline(pipeline_id)

    def get_all_pipelines(self) -> List[DataUpdatePipeline]:
        return self.data_service.get_all_pipelines()

    def get_running_pipelines(self) -> List[DataUpdatePipeline]:
        return self.data_service.get_pipelines_by_status(PipelineStatus.RUNNING)

    def get_failed_pipelines(self) -> List[DataUpdatePipeline]:
        return self.data_service.get_pipelines_by_status(PipelineStatus.FAILED)
