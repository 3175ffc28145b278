"""
Service that runs data pipelines: source fallback, quota and reliability
tracking, validation, deduplication, versioning and persistence.
"""

import asyncio
import inspect
import time
from datetime import datetime, time as dt_time, timedelta
from typing import Any, Callable, Dict, List, Optional, Sequence

from shared.schemas.pipeline import (
    DataSource,
    DataUpdateEvent,
    DataUpdatePipeline,
    PersistResult,
    PipelineConfiguration,
    PipelineExecutionResult,
    Record,
    ReliabilityMetrics,
    SourceConfig,
    ValidationConfig,
    VersionMetadata,
)
from shared.services.base import PersistenceAdapter, SourceAdapter
from shared.services.fallback_service import ManualAddressService
from shared.services.foursquare_service import FoursquareService
from shared.services.google_places_service import GooglePlacesService
from shared.services.osm_service import OSMService
from shared.services.urbis_service import URBISService
from shared.utils.configs import base_configs
from shared.utils.errors import (
    DataAcquisitionError,
    PipelineNotFoundError,
    QuotaExceededError,
    ValidationError,
)
from shared.utils.helpers import is_valid_coordinate, is_within_bounds, utc_now
from shared.utils.logger import logger
from shared.utils.types import (
    DataSourceProvider,
    DataType,
    DataUpdateEventType,
    ErrorType,
    PipelineStatus,
)

from .strategies import UpdateFrequencyStrategy, UpdateStrategyFactory
from .versioning import DataVersionService

AdapterFactory = Callable[[SourceConfig], SourceAdapter]
EventCallback = Callable[[DataUpdateEvent], Any]

DEFAULT_ADAPTERS: Dict[DataSourceProvider, AdapterFactory] = {
    DataSourceProvider.GOOGLE: GooglePlacesService,
    DataSourceProvider.URBIS: URBISService,
    DataSourceProvider.OSM: OSMService,
    DataSourceProvider.FOURSQUARE: FoursquareService,
    DataSourceProvider.MANUAL: ManualAddressService,
}

# Providers that can serve only one data type
TYPE_RESTRICTIONS: Dict[DataSourceProvider, DataType] = {
    DataSourceProvider.URBIS: DataType.ADDRESSES,
    DataSourceProvider.MANUAL: DataType.ADDRESSES,
    DataSourceProvider.FOURSQUARE: DataType.DOG_PLACES,
}


class ScheduledDataService:
    """
    Owns the pipelines and executes them on demand.

    Adapters are looked up in a static registry keyed by provider; the
    persistence adapter defaults to Firestore and is created on first use.
    """

    def __init__(
        self,
        version_service: DataVersionService,
        adapters: Optional[Dict[DataSourceProvider, AdapterFactory]] = None,
        persistence: Optional[PersistenceAdapter] = None,
        clock: Callable[[], datetime] = utc_now,
        version_keep_count: int = 5,
    ):
        self.version_service = version_service
        self.adapters = dict(DEFAULT_ADAPTERS if adapters is None else adapters)
        self._persistence = persistence
        self.clock = clock
        self.version_keep_count = version_keep_count
        self.pipelines: Dict[str, DataUpdatePipeline] = {}
        self.event_listeners: Dict[DataUpdateEventType, List[EventCallback]] = {}
        self._strategies: Dict[str, UpdateFrequencyStrategy] = {}

    @property
    def persistence(self) -> PersistenceAdapter:
        if self._persistence is None:
            # Imported here so firebase is only loaded when actually persisting
            from shared.services.firestore_service import FirestoreService

            self._persistence = FirestoreService()
        return self._persistence

    def strategy_for(self, pipeline: DataUpdatePipeline) -> UpdateFrequencyStrategy:
        key = pipeline.frequency.value
        if key not in self._strategies:
            self._strategies[key] = UpdateStrategyFactory.create_strategy(pipeline.frequency)
        return self._strategies[key]

    def initialize_pipelines(self, configs: Sequence[PipelineConfiguration]) -> None:
        """
        Create one idle pipeline per configuration, replacing any pipeline
        with the same id.

        Raises:
            ValueError: If a configuration names an unsupported frequency
        """
        now = self.clock()
        for config in configs:
            pipeline = DataUpdatePipeline(
                id=config.id,
                data_type=config.data_type,
                frequency=config.frequency,
                sources=list(config.sources),
                status=PipelineStatus.IDLE,
                config=config.config,
            )
            pipeline.next_update = self.strategy_for(pipeline).get_next_update_time(
                None, pipeline.frequency, now=now
            )
            self.pipelines[pipeline.id] = pipeline
            logger.info(
                f"Initialized pipeline {pipeline.id} with {len(pipeline.sources)} sources, "
                f"next update {pipeline.next_update.isoformat()}"
            )

    async def execute_pipeline(self, pipeline_id: str) -> PipelineExecutionResult:
        """
        Run a pipeline once.

        Args:
            pipeline_id: Id of a registered pipeline

        Returns:
            The execution result

        Raises:
            PipelineNotFoundError: If the id is unknown
            Exception: Whatever made the run fail, after status and metrics are updated
        """
        pipeline = self.pipelines.get(pipeline_id)
        if pipeline is None:
            raise PipelineNotFoundError(pipeline_id)

        pipeline.status = PipelineStatus.RUNNING
        await self.emit_event(
            pipeline.id,
            DataUpdateEventType.PIPELINE_STARTED,
            {"data_type": pipeline.data_type.value},
        )
        logger.info(f"Pipeline {pipeline.id} started")
        start_time = time.time()

        try:
            result = await self.execute_with_fallback(pipeline)
        except Exception as e:
            duration = time.time() - start_time
            self._update_metrics(pipeline, duration, None)
            pipeline.status = PipelineStatus.FAILED
            pipeline.last_error = str(e)
            pipeline.next_update = self.strategy_for(pipeline).get_next_update_time(
                pipeline.last_update, pipeline.frequency, now=self.clock()
            )
            logger.error(f"Pipeline {pipeline.id} failed after {duration:.2f}s: {e}")
            await self.emit_event(
                pipeline.id,
                DataUpdateEventType.PIPELINE_FAILED,
                {"error": str(e), "duration": duration},
            )
            raise

        result.duration = time.time() - start_time
        self._update_metrics(pipeline, result.duration, result)
        pipeline.status = PipelineStatus.COMPLETED
        pipeline.last_error = None
        pipeline.last_update = self.clock()
        pipeline.next_update = self.strategy_for(pipeline).get_next_update_time(
            pipeline.last_update, pipeline.frequency, now=pipeline.last_update
        )
        self.version_service.cleanup_old_versions(self.version_keep_count)

        logger.info(
            f"Pipeline {pipeline.id} completed in {result.duration:.2f}s: "
            f"{result.records_processed} processed, {result.records_persisted} persisted, "
            f"{result.records_skipped} skipped, quality {result.quality_score}"
        )
        await self.emit_event(
            pipeline.id,
            DataUpdateEventType.PIPELINE_COMPLETED,
            {
                "records_processed": result.records_processed,
                "records_persisted": result.records_persisted,
                "records_skipped": result.records_skipped,
                "quality_score": result.quality_score,
                "sources_used": [p.value for p in result.sources_used],
                "duration": result.duration,
            },
        )
        return result

    async def execute_with_fallback(
        self, pipeline: DataUpdatePipeline
    ) -> PipelineExecutionResult:
        """
        Pull data from the pipeline's active sources in priority order until
        the gathered data meets the quality threshold, then deduplicate and
        persist it.

        Records from a source whose dataset hash is unchanged since its last
        version are counted as skipped rather than persisted again. Versions of
        data that failed to persist are discarded, so the next run writes it.

        Raises:
            DataAcquisitionError: If there is no active source, if a source
                fails while fallback is disabled, or if every source failed
        """
        sources = sorted(
            (source for source in pipeline.sources if source.is_active),
            key=lambda source: source.priority,
        )
        if not sources:
            raise DataAcquisitionError(
                message=f"No active sources for pipeline {pipeline.id}",
                error_type=ErrorType.UNSUPPORTED_SOURCE,
                status_code=404,
            )

        # Versions of data not yet written; dropped if the run does not persist them
        pending_versions: List[str] = []
        try:
            return await self._gather_and_persist(pipeline, sources, pending_versions)
        except Exception:
            self.version_service.discard_versions(pending_versions)
            raise

    async def _gather_and_persist(
        self,
        pipeline: DataUpdatePipeline,
        sources: List[DataSource],
        pending_versions: List[str],
    ) -> PipelineExecutionResult:
        validation = pipeline.config.validation
        gathered: List[Record] = []
        to_persist: List[Record] = []
        sources_used: List[DataSourceProvider] = []
        errors: List[str] = []
        skipped = 0
        last_error: Optional[Exception] = None

        for index, source in enumerate(sources):
            attempt_start = time.time()
            try:
                await self.check_quota(source, pipeline.id)
                records = await self.acquire_data_from_source(source, pipeline.data_type)
            except Exception as e:
                if not isinstance(e, QuotaExceededError):
                    self.record_failure(source, time.time() - attempt_start)
                last_error = e
                errors.append(f"{source.provider.value}: {e}")
                logger.warning(f"Source {source.provider.value} failed for {pipeline.id}: {e}")
                await self.emit_event(
                    pipeline.id,
                    DataUpdateEventType.SOURCE_FAILED,
                    {"provider": source.provider.value, "error": str(e)},
                )
                if not pipeline.config.fallback.enabled:
                    raise
                if index < len(sources) - 1:
                    await asyncio.sleep(source.config.timeout)
                continue

            processing_time = time.time() - attempt_start
            self.record_success(source, processing_time)
            await self.emit_event(
                pipeline.id,
                DataUpdateEventType.SOURCE_CONNECTED,
                {"provider": source.provider.value, "records": len(records)},
            )

            valid = self.validate_data(records, validation)
            await self.emit_event(
                pipeline.id,
                DataUpdateEventType.DATA_VALIDATED,
                {
                    "provider": source.provider.value,
                    "received": len(records),
                    "valid": len(valid),
                },
            )

            previous = self.version_service.get_latest_version(
                pipeline.data_type, source.provider
            )
            version = self.version_service.create_version(
                pipeline.data_type,
                source.provider,
                valid,
                VersionMetadata(
                    processing_time=processing_time,
                    warnings=(
                        [f"{len(records) - len(valid)} records rejected by validation"]
                        if len(valid) < len(records)
                        else []
                    ),
                ),
            )
            comparison = self.version_service.compare_versions(previous, version)
            if comparison.needs_update:
                to_persist.extend(valid)
                pending_versions.append(version.id)
            else:
                skipped += len(valid)
                logger.info(
                    f"{source.provider.value} data for {pipeline.id} unchanged since "
                    f"version {comparison.previous_version.id}, skipping persistence"
                )

            gathered.extend(valid)
            sources_used.append(source.provider)

            quality = self.version_service.calculate_quality_metrics(gathered)
            if quality.overall >= validation.quality_threshold:
                logger.info(
                    f"Quality {quality.overall} meets threshold {validation.quality_threshold} "
                    f"after {source.provider.value}"
                )
                break

        if not gathered and last_error is not None:
            raise last_error

        if validation.duplicate_detection:
            deduplicated = self.deduplicate_data(to_persist)
            skipped += len(to_persist) - len(deduplicated)
            to_persist = deduplicated
            gathered = self.deduplicate_data(gathered)

        persist_result = (
            await self.persist_data(to_persist, pipeline.data_type)
            if to_persist
            else PersistResult()
        )
        if persist_result.errors:
            # Partially written data must be rewritten on the next run
            self.version_service.discard_versions(pending_versions)
        await self.emit_event(
            pipeline.id,
            DataUpdateEventType.DATA_PERSISTED,
            {
                "records_persisted": persist_result.records_persisted,
                "records_skipped": persist_result.records_skipped,
                "errors": list(persist_result.errors),
            },
        )

        quality = self.version_service.calculate_quality_metrics(gathered)
        return PipelineExecutionResult(
            pipeline_id=pipeline.id,
            success=True,
            records_processed=len(gathered),
            records_persisted=persist_result.records_persisted,
            records_skipped=skipped + persist_result.records_skipped,
            quality_score=quality.overall,
            sources_used=sources_used,
            errors=errors + persist_result.errors,
        )

    def _next_reset_time(self, now: datetime) -> datetime:
        tz = base_configs["timezone"]
        local_now = now.astimezone(tz)
        return tz.localize(
            datetime.combine(local_now.date() + timedelta(days=1), dt_time(0))
        )

    async def check_quota(self, source: DataSource, pipeline_id: str = "") -> None:
        """
        Reset the daily counter when its reset time has passed, then make sure
        the source has quota left.

        Raises:
            QuotaExceededError: If the daily quota is used up
        """
        quota = source.quota
        now = self.clock()
        if quota.reset_time is None:
            quota.reset_time = self._next_reset_time(now)
        elif now >= quota.reset_time:
            quota.current = 0
            quota.reset_time = self._next_reset_time(now)

        if quota.current >= quota.daily:
            await self.emit_event(
                pipeline_id,
                DataUpdateEventType.QUOTA_EXCEEDED,
                {
                    "provider": source.provider.value,
                    "current": quota.current,
                    "daily": quota.daily,
                    "reset_time": quota.reset_time.isoformat(),
                },
            )
            raise QuotaExceededError(source.provider, quota.reset_time)

        if quota.current >= quota.daily * quota.warning_threshold / 100:
            logger.warning(
                f"Quota for {source.provider.value} at {quota.current}/{quota.daily}"
            )
            await self.emit_event(
                pipeline_id,
                DataUpdateEventType.QUOTA_WARNING,
                {
                    "provider": source.provider.value,
                    "current": quota.current,
                    "daily": quota.daily,
                    "usage_percent": round(quota.current / quota.daily * 100, 1),
                },
            )

    async def acquire_data_from_source(
        self, source: DataSource, data_type: DataType
    ) -> List[Record]:
        """
        Throttle, count the request against the quota and call the provider adapter.

        Raises:
            DataAcquisitionError: UNSUPPORTED_SOURCE when no adapter is
                registered, INVALID_TYPE when the provider cannot serve the
                data type, or whatever the adapter raises
        """
        factory = self.adapters.get(source.provider)
        if factory is None:
            raise DataAcquisitionError(
                message=f"Unsupported data source: {source.provider.value}",
                error_type=ErrorType.UNSUPPORTED_SOURCE,
                provider=source.provider,
                status_code=404,
            )

        allowed_type = TYPE_RESTRICTIONS.get(source.provider)
        if allowed_type is not None and allowed_type != data_type:
            raise DataAcquisitionError(
                message=f"{source.provider.value} only provides {allowed_type.value} data",
                error_type=ErrorType.INVALID_TYPE,
                provider=source.provider,
                status_code=400,
            )

        if source.config.rate_limit > 0:
            await asyncio.sleep(1 / source.config.rate_limit)

        source.quota.current += 1
        adapter = factory(source.config)
        records = await adapter.fetch(data_type)
        logger.info(f"Acquired {len(records)} {data_type.value} records from {source.provider.value}")
        return records

    def validate_record(self, record: Record, config: ValidationConfig) -> None:
        """
        Raises:
            ValidationError: If a required field is missing or, with geo
                validation on, the coordinates are not valid world coordinates
        """
        for field_name in config.required_fields:
            value = getattr(record, field_name, None)
            if value is None or value == "":
                raise ValidationError(
                    message=f"Missing required field '{field_name}' on record {record.id}",
                    provider=record.source,
                    invalid_data=record,
                )

        if config.geo_validation:
            location = record.location
            if location is None or not is_valid_coordinate(
                location.latitude, location.longitude
            ):
                raise ValidationError(
                    message=f"Invalid coordinates on record {record.id}",
                    provider=record.source,
                    invalid_data=record,
                )

    def validate_data(self, data: Sequence[Record], config: ValidationConfig) -> List[Record]:
        """
        Keep the records that pass validation.

        Invalid records are logged and skipped. Records outside the Brussels
        region are dropped without a warning.
        """
        valid: List[Record] = []
        for record in data:
            try:
                self.validate_record(record, config)
            except ValidationError as e:
                logger.warning(f"Skipping invalid record: {e.message}")
                continue

            if config.geo_validation and not is_within_bounds(
                record.location.latitude, record.location.longitude
            ):
                continue
            valid.append(record)
        return valid

    def deduplicate_data(self, data: Sequence[Record]) -> List[Record]:
        """First record wins per place id, or per coordinates rounded to 6 decimals."""
        seen = set()
        unique: List[Record] = []
        for record in data:
            if record.place_id:
                key = record.place_id
            else:
                key = f"{record.location.latitude:.6f},{record.location.longitude:.6f}"
            if key in seen:
                continue
            seen.add(key)
            unique.append(record)
        return unique

    async def persist_data(self, data: List[Record], data_type: DataType) -> PersistResult:
        return await self.persistence.batch_upsert(data, data_type)

    def record_success(self, source: DataSource, response_time: float) -> None:
        metrics = source.reliability
        self._record_request(metrics, response_time, failed=False)
        metrics.consecutive_failures = 0
        metrics.uptime = min(100.0, metrics.uptime + 0.1)
        metrics.score = self.calculate_reliability_score(metrics)

    def record_failure(self, source: DataSource, response_time: float) -> None:
        metrics = source.reliability
        self._record_request(metrics, response_time, failed=True)
        metrics.consecutive_failures += 1
        metrics.last_failure = self.clock()
        metrics.uptime = max(0.0, metrics.uptime - 1)
        metrics.score = self.calculate_reliability_score(metrics)

    @staticmethod
    def _record_request(
        metrics: ReliabilityMetrics, response_time: float, failed: bool
    ) -> None:
        metrics.total_requests += 1
        if failed:
            metrics.failed_requests += 1
        metrics.avg_response_time += (
            response_time - metrics.avg_response_time
        ) / metrics.total_requests
        metrics.error_rate = metrics.failed_requests / metrics.total_requests * 100

    def calculate_reliability_score(self, metrics: ReliabilityMetrics) -> float:
        """
        0.4 * uptime + 0.3 * inverse error rate + 0.3 * recency, where recency
        grows from 0 right after a failure to 100 a week later.
        """
        if metrics.last_failure is None:
            recency = 100.0
        else:
            days_since = (self.clock() - metrics.last_failure).total_seconds() / 86400
            recency = min(100.0, max(0.0, days_since / 7 * 100))
        inverse_error = max(0.0, 100 - metrics.error_rate * 10)
        return round(0.4 * metrics.uptime + 0.3 * inverse_error + 0.3 * recency, 2)

    def _update_metrics(
        self,
        pipeline: DataUpdatePipeline,
        duration: float,
        result: Optional[PipelineExecutionResult],
    ) -> None:
        metrics = pipeline.metrics
        metrics.total_runs += 1
        metrics.last_run_duration = duration
        metrics.average_runtime += (duration - metrics.average_runtime) / metrics.total_runs
        if result is None:
            metrics.failed_runs += 1
            return
        metrics.successful_runs += 1
        metrics.records_processed += result.records_processed
        metrics.records_updated += result.records_persisted
        metrics.records_skipped += result.records_skipped
        metrics.quality_score = result.quality_score

    def add_event_listener(
        self, event_type: DataUpdateEventType, callback: EventCallback
    ) -> None:
        self.event_listeners.setdefault(event_type, []).append(callback)

    def remove_event_listener(
        self, event_type: DataUpdateEventType, callback: EventCallback
    ) -> None:
        listeners = self.event_listeners.get(event_type, [])
        if callback in listeners:
            listeners.remove(callback)

    async def emit_event(
        self,
        pipeline_id: str,
        event_type: DataUpdateEventType,
        data: Optional[Dict[str, Any]] = None,
    ) -> DataUpdateEvent:
        """
        Deliver an event to every listener of its type. A failing listener is
        logged and does not affect the others.
        """
        event = DataUpdateEvent(
            pipeline_id=pipeline_id,
            type=event_type,
            data=data or {},
            timestamp=self.clock(),
        )
        for callback in list(self.event_listeners.get(event_type, [])):
            try:
                outcome = callback(event)
                if inspect.isawaitable(outcome):
                    await outcome
            except Exception as e:
                logger.error(f"Event listener for {event_type.value} failed: {e}")
        return event

    def get_pipeline(self, pipeline_id: str) -> Optional[DataUpdatePipeline]:
        return self.pipelines.get(pipeline_id)

    def get_all_pipelines(self) -> List[DataUpdatePipeline]:
        return list(self.pipelines.values())

    def get_pipelines_by_status(self, status: PipelineStatus) -> List[DataUpdatePipeline]:
        return [p for p in self.pipelines.values() if p.status == status]
