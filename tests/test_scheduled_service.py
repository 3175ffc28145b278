"""
Tests for pipeline execution: source fallback, quotas, validation,
deduplication, versioning and lifecycle events.
"""

from datetime import timedelta

import pytest
from conftest import (
    NOW,
    RecordingPersistence,
    make_address,
    make_pipeline_config,
    make_place,
    make_source,
    stub_factory,
)

from scheduler.service import ScheduledDataService
from scheduler.versioning import DataVersionService
from shared.schemas.pipeline import PersistResult
from shared.utils.errors import (
    DataAcquisitionError,
    PersistenceError,
    PipelineNotFoundError,
    QuotaExceededError,
)
from shared.utils.types import (
    DataSourceProvider,
    DataType,
    DataUpdateEventType,
    ErrorType,
    PipelineStatus,
)

GOOGLE = DataSourceProvider.GOOGLE
OSM = DataSourceProvider.OSM
FOURSQUARE = DataSourceProvider.FOURSQUARE


def distinct_places(prefix, count):
    return [
        make_place(f"{prefix}-{i}", name=f"Place {prefix} {i}", latitude=50.84 + i * 0.001)
        for i in range(count)
    ]


def build_service(clock, persistence, adapters):
    return ScheduledDataService(
        DataVersionService(clock=clock),
        adapters=adapters,
        persistence=persistence,
        clock=clock,
    )


class TestSourceFallback:
    """Test source ordering, fallback and failure propagation."""

    @pytest.mark.asyncio
    async def test_inactive_source_is_skipped(self, clock, persistence, calls):
        """Test that an inactive priority-1 source is never called."""
        service = build_service(
            clock,
            persistence,
            {
                GOOGLE: stub_factory(GOOGLE, distinct_places("g", 3), calls=calls),
                OSM: stub_factory(OSM, distinct_places("o", 2), calls=calls),
            },
        )
        service.initialize_pipelines(
            [
                make_pipeline_config(
                    [make_source(GOOGLE, priority=1, is_active=False), make_source(OSM, priority=2)]
                )
            ]
        )

        result = await service.execute_pipeline("dogPlaces_pipeline")

        assert calls == [OSM]
        assert result.sources_used == [OSM]
        assert result.records_processed == 2

    @pytest.mark.asyncio
    async def test_sources_are_tried_in_priority_order(self, clock, persistence, calls):
        """Test that sources run by ascending priority regardless of list order."""
        service = build_service(
            clock,
            persistence,
            {
                GOOGLE: stub_factory(GOOGLE, error=DataAcquisitionError("down"), calls=calls),
                OSM: stub_factory(OSM, distinct_places("o", 2), calls=calls),
            },
        )
        service.initialize_pipelines(
            [make_pipeline_config([make_source(OSM, priority=3), make_source(GOOGLE, priority=1)])]
        )

        await service.execute_pipeline("dogPlaces_pipeline")

        assert calls == [GOOGLE, OSM]

    @pytest.mark.asyncio
    async def test_fallback_to_next_source_on_failure(self, clock, persistence, calls):
        """Test that a failing source falls back and is recorded as failed."""
        google = make_source(GOOGLE, priority=1)
        service = build_service(
            clock,
            persistence,
            {
                GOOGLE: stub_factory(GOOGLE, error=DataAcquisitionError("boom"), calls=calls),
                OSM: stub_factory(OSM, distinct_places("o", 3), calls=calls),
            },
        )
        service.initialize_pipelines([make_pipeline_config([google, make_source(OSM, priority=2)])])
        failed_events = []
        service.add_event_listener(DataUpdateEventType.SOURCE_FAILED, failed_events.append)

        result = await service.execute_pipeline("dogPlaces_pipeline")

        assert result.success is True
        assert result.sources_used == [OSM]
        assert result.records_persisted == 3
        assert any("boom" in error for error in result.errors)
        assert google.reliability.consecutive_failures == 1
        assert google.reliability.failed_requests == 1
        assert failed_events[0].data["provider"] == "Google"

    @pytest.mark.asyncio
    async def test_fallback_disabled_raises_first_error(self, clock, persistence, calls):
        """Test that without fallback the first failure fails the run."""
        service = build_service(
            clock,
            persistence,
            {
                GOOGLE: stub_factory(GOOGLE, error=DataAcquisitionError("first"), calls=calls),
                OSM: stub_factory(OSM, distinct_places("o", 3), calls=calls),
            },
        )
        service.initialize_pipelines(
            [
                make_pipeline_config(
                    [make_source(GOOGLE, priority=1), make_source(OSM, priority=2)],
                    fallback=False,
                )
            ]
        )

        with pytest.raises(DataAcquisitionError, match="first"):
            await service.execute_pipeline("dogPlaces_pipeline")

        assert calls == [GOOGLE]
        assert persistence.calls == []
        assert service.get_pipeline("dogPlaces_pipeline").status == PipelineStatus.FAILED

    @pytest.mark.asyncio
    async def test_all_sources_failing_raises_last_error(self, clock, persistence, calls):
        """Test that the last error surfaces when no source produced data."""
        service = build_service(
            clock,
            persistence,
            {
                GOOGLE: stub_factory(GOOGLE, error=DataAcquisitionError("first"), calls=calls),
                OSM: stub_factory(OSM, error=DataAcquisitionError("second"), calls=calls),
            },
        )
        service.initialize_pipelines(
            [make_pipeline_config([make_source(GOOGLE, priority=1), make_source(OSM, priority=2)])]
        )

        with pytest.raises(DataAcquisitionError, match="second"):
            await service.execute_pipeline("dogPlaces_pipeline")

        assert calls == [GOOGLE, OSM]
        assert persistence.calls == []

    @pytest.mark.asyncio
    async def test_no_active_sources(self, clock, persistence):
        """Test that a pipeline with every source disabled fails."""
        service = build_service(clock, persistence, {})
        service.initialize_pipelines(
            [make_pipeline_config([make_source(GOOGLE, is_active=False)])]
        )

        with pytest.raises(DataAcquisitionError) as exc_info:
            await service.execute_pipeline("dogPlaces_pipeline")
        assert exc_info.value.error_type == ErrorType.UNSUPPORTED_SOURCE

    @pytest.mark.asyncio
    async def test_stops_once_quality_threshold_is_met(self, clock, persistence, calls):
        """Test that fresh, complete data from the first source ends the loop."""
        service = build_service(
            clock,
            persistence,
            {
                GOOGLE: stub_factory(GOOGLE, distinct_places("g", 2), calls=calls),
                OSM: stub_factory(OSM, distinct_places("o", 2), calls=calls),
            },
        )
        service.initialize_pipelines(
            [make_pipeline_config([make_source(GOOGLE, priority=1), make_source(OSM, priority=2)])]
        )

        result = await service.execute_pipeline("dogPlaces_pipeline")

        assert calls == [GOOGLE]
        assert result.quality_score == 100

    @pytest.mark.asyncio
    async def test_continues_while_below_quality_threshold(self, clock, persistence, calls):
        """Test that stale data pulls in the next source."""
        stale = [
            make_place(
                f"s-{i}",
                latitude=50.84 + i * 0.001,
                longitude=4.36,
                last_updated=NOW - timedelta(days=60),
            )
            for i in range(2)
        ]
        service = build_service(
            clock,
            persistence,
            {
                GOOGLE: stub_factory(GOOGLE, stale, calls=calls),
                OSM: stub_factory(OSM, distinct_places("o", 2), calls=calls),
            },
        )
        service.initialize_pipelines(
            [
                make_pipeline_config(
                    [make_source(GOOGLE, priority=1), make_source(OSM, priority=2)],
                    quality_threshold=90,
                )
            ]
        )

        result = await service.execute_pipeline("dogPlaces_pipeline")

        assert calls == [GOOGLE, OSM]
        assert result.sources_used == [GOOGLE, OSM]
        assert result.records_persisted == 4


class TestQuota:
    """Test quota enforcement, warnings and daily resets."""

    @pytest.mark.asyncio
    async def test_exhausted_quota_skips_source_without_calling_it(self, clock, persistence, calls):
        """Test that a source at its quota is never acquired from."""
        google = make_source(GOOGLE, priority=1, daily=10, current=10)
        service = build_service(
            clock,
            persistence,
            {
                GOOGLE: stub_factory(GOOGLE, distinct_places("g", 2), calls=calls),
                OSM: stub_factory(OSM, distinct_places("o", 2), calls=calls),
            },
        )
        service.initialize_pipelines([make_pipeline_config([google, make_source(OSM, priority=2)])])
        exceeded = []
        service.add_event_listener(DataUpdateEventType.QUOTA_EXCEEDED, exceeded.append)

        result = await service.execute_pipeline("dogPlaces_pipeline")

        assert calls == [OSM]
        assert result.sources_used == [OSM]
        assert google.quota.current == 10
        assert len(exceeded) == 1
        # Quota exhaustion is not a reliability failure
        assert google.reliability.failed_requests == 0

    @pytest.mark.asyncio
    async def test_check_quota_raises_at_limit(self, clock, persistence):
        """Test the error raised when the quota is used up."""
        service = build_service(clock, persistence, {})
        source = make_source(GOOGLE, daily=5, current=5)

        with pytest.raises(QuotaExceededError) as exc_info:
            await service.check_quota(source, "dogPlaces_pipeline")

        assert exc_info.value.status_code == 429
        assert exc_info.value.retryable is True
        assert exc_info.value.reset_time == source.quota.reset_time

    @pytest.mark.asyncio
    async def test_quota_warning_emitted_at_threshold(self, clock, persistence):
        """Test that usage at the warning threshold emits a warning."""
        service = build_service(clock, persistence, {})
        warnings = []
        service.add_event_listener(DataUpdateEventType.QUOTA_WARNING, warnings.append)

        await service.check_quota(make_source(GOOGLE, daily=100, current=80), "p")
        await service.check_quota(make_source(GOOGLE, daily=100, current=79), "p")

        assert len(warnings) == 1
        assert warnings[0].data["usage_percent"] == 80.0
        assert warnings[0].pipeline_id == "p"

    @pytest.mark.asyncio
    async def test_quota_resets_after_reset_time(self, clock, persistence):
        """Test that the daily counter goes back to zero once its reset time passed."""
        service = build_service(clock, persistence, {})
        source = make_source(GOOGLE, daily=5, current=5)
        source.quota.reset_time = NOW - timedelta(minutes=1)

        await service.check_quota(source)

        assert source.quota.current == 0
        assert source.quota.reset_time > NOW

    @pytest.mark.asyncio
    async def test_reset_time_is_next_brussels_midnight(self, clock, persistence):
        """Test that the first check sets the reset to local midnight."""
        service = build_service(clock, persistence, {})
        source = make_source(GOOGLE)

        await service.check_quota(source)

        # 2025-03-13 00:00 CET
        assert source.quota.reset_time == NOW.replace(day=12, hour=23)

    @pytest.mark.asyncio
    async def test_acquire_counts_against_quota(self, clock, persistence):
        """Test that every acquisition increments the counter."""
        service = build_service(clock, persistence, {OSM: stub_factory(OSM, distinct_places("o", 1))})
        source = make_source(OSM, current=3)

        records = await service.acquire_data_from_source(source, DataType.DOG_PLACES)

        assert len(records) == 1
        assert source.quota.current == 4


class TestAcquisitionErrors:
    """Test provider lookup and data type restrictions."""

    @pytest.mark.asyncio
    async def test_unregistered_provider(self, clock, persistence):
        """Test that a provider without adapter is unsupported."""
        service = build_service(clock, persistence, {})

        with pytest.raises(DataAcquisitionError) as exc_info:
            await service.acquire_data_from_source(make_source(GOOGLE), DataType.DOG_PLACES)

        assert exc_info.value.error_type == ErrorType.UNSUPPORTED_SOURCE
        assert exc_info.value.status_code == 404

    @pytest.mark.asyncio
    async def test_provider_cannot_serve_data_type(self, clock, persistence, calls):
        """Test that Foursquare refuses address data before any call."""
        service = build_service(
            clock, persistence, {FOURSQUARE: stub_factory(FOURSQUARE, calls=calls)}
        )

        with pytest.raises(DataAcquisitionError) as exc_info:
            await service.acquire_data_from_source(make_source(FOURSQUARE), DataType.ADDRESSES)

        assert exc_info.value.error_type == ErrorType.INVALID_TYPE
        assert exc_info.value.status_code == 400
        assert calls == []


class TestValidationAndDeduplication:
    """Test record validation and duplicate removal."""

    @pytest.fixture
    def service(self, clock, persistence):
        return build_service(clock, persistence, {})

    def test_invalid_records_are_skipped(self, service):
        """Test that missing fields and bad coordinates drop the record."""
        config = make_pipeline_config(
            [], required_fields=["id", "location", "name"]
        ).config.validation
        unnamed = make_place("unnamed", name="")
        off_world = make_place("off-world", latitude=120.0)
        good = make_place("good")

        assert service.validate_data([unnamed, off_world, good], config) == [good]

    def test_records_outside_brussels_are_dropped(self, service):
        """Test the Brussels bounding box filter."""
        config = make_pipeline_config([]).config.validation
        antwerp = make_place("antwerp", latitude=51.2194, longitude=4.4025)
        brussels = make_place("brussels")

        assert service.validate_data([antwerp, brussels], config) == [brussels]

    def test_geo_validation_off_keeps_outside_records(self, service):
        """Test that disabling geo validation keeps far-away records."""
        config = make_pipeline_config([]).config.validation
        config.geo_validation = False
        antwerp = make_place("antwerp", latitude=51.2194, longitude=4.4025)

        assert service.validate_data([antwerp], config) == [antwerp]

    def test_deduplicate_by_place_id(self, service):
        """Test that the first record wins per place id."""
        first = make_place("a", place_id="ChIJ1", latitude=50.85)
        second = make_place("b", place_id="ChIJ1", latitude=50.86)
        other = make_place("c", place_id="ChIJ2", latitude=50.85)

        assert service.deduplicate_data([first, second, other]) == [first, other]

    def test_deduplicate_by_coordinates(self, service):
        """Test that records without place id collapse on rounded coordinates."""
        first = make_address("a", latitude=50.8466001, longitude=4.3516)
        near_same = make_address("b", latitude=50.84660004, longitude=4.3516)
        elsewhere = make_address("c", latitude=50.8470, longitude=4.3516)

        assert service.deduplicate_data([first, near_same, elsewhere]) == [first, elsewhere]

    @pytest.mark.asyncio
    async def test_duplicates_count_as_skipped(self, clock, persistence):
        """Test that deduplicated records show up in the skipped count."""
        duplicated = [make_place("a", place_id="X"), make_place("b", place_id="X")]
        service = build_service(clock, persistence, {GOOGLE: stub_factory(GOOGLE, duplicated)})
        service.initialize_pipelines([make_pipeline_config([make_source(GOOGLE)])])

        result = await service.execute_pipeline("dogPlaces_pipeline")

        assert result.records_persisted == 1
        assert result.records_skipped == 1
        assert [record.id for record in persistence.calls[0][0]] == ["a"]


class TestVersioningInExecution:
    """Test that unchanged datasets are not persisted again."""

    @pytest.mark.asyncio
    async def test_unchanged_data_is_skipped_on_second_run(self, clock, persistence):
        """Test that identical data on the next run is counted as skipped."""
        service = build_service(
            clock, persistence, {GOOGLE: stub_factory(GOOGLE, distinct_places("g", 3))}
        )
        service.initialize_pipelines([make_pipeline_config([make_source(GOOGLE)])])

        first = await service.execute_pipeline("dogPlaces_pipeline")
        second = await service.execute_pipeline("dogPlaces_pipeline")

        assert first.records_persisted == 3
        assert second.records_persisted == 0
        assert second.records_skipped == 3
        assert len(persistence.calls) == 1

    @pytest.mark.asyncio
    async def test_versions_are_cleaned_up_after_success(self, clock, persistence):
        """Test that only the configured number of versions is kept."""
        service = ScheduledDataService(
            DataVersionService(clock=clock),
            adapters={GOOGLE: stub_factory(GOOGLE, distinct_places("g", 1))},
            persistence=persistence,
            clock=clock,
            version_keep_count=2,
        )
        service.initialize_pipelines([make_pipeline_config([make_source(GOOGLE)])])

        for _ in range(4):
            await service.execute_pipeline("dogPlaces_pipeline")

        assert len(service.version_service.versions) == 2

    @pytest.mark.asyncio
    async def test_failed_write_is_retried_on_next_run(self, clock):
        """Test that data is written again after persistence raised."""

        class FailingOncePersistence(RecordingPersistence):
            async def batch_upsert(self, data, data_type):
                if not self.calls:
                    self.calls.append(None)
                    raise PersistenceError("deadline exceeded")
                return await super().batch_upsert(data, data_type)

        persistence = FailingOncePersistence()
        service = build_service(
            clock, persistence, {GOOGLE: stub_factory(GOOGLE, distinct_places("g", 3))}
        )
        service.initialize_pipelines([make_pipeline_config([make_source(GOOGLE)])])

        with pytest.raises(PersistenceError):
            await service.execute_pipeline("dogPlaces_pipeline")
        assert service.version_service.versions == {}

        result = await service.execute_pipeline("dogPlaces_pipeline")

        assert len(persistence.calls) == 2
        assert result.records_persisted == 3
        assert result.records_skipped == 0
        assert service.get_pipeline("dogPlaces_pipeline").status == PipelineStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_partial_write_is_retried_on_next_run(self, clock):
        """Test that batch errors keep the data eligible for the next run."""

        class PartialPersistence(RecordingPersistence):
            async def batch_upsert(self, data, data_type):
                self.calls.append((list(data), data_type))
                if len(self.calls) == 1:
                    return PersistResult(
                        records_persisted=2,
                        records_skipped=1,
                        errors=["Batch 2 failed: deadline exceeded"],
                    )
                return PersistResult(records_persisted=len(data))

        persistence = PartialPersistence()
        service = build_service(
            clock, persistence, {GOOGLE: stub_factory(GOOGLE, distinct_places("g", 3))}
        )
        service.initialize_pipelines([make_pipeline_config([make_source(GOOGLE)])])

        first = await service.execute_pipeline("dogPlaces_pipeline")
        second = await service.execute_pipeline("dogPlaces_pipeline")

        assert first.errors == ["Batch 2 failed: deadline exceeded"]
        assert second.records_persisted == 3
        assert len(persistence.calls) == 2


class TestPipelineExecution:
    """Test status, metrics and events of a whole run."""

    @pytest.mark.asyncio
    async def test_unknown_pipeline(self, clock, persistence):
        """Test that executing an unknown id raises."""
        service = build_service(clock, persistence, {})
        with pytest.raises(PipelineNotFoundError):
            await service.execute_pipeline("missing_pipeline")

    def test_initialized_pipeline_is_idle_with_next_update(self, clock, persistence):
        """Test the state of a freshly registered pipeline."""
        service = build_service(clock, persistence, {})
        service.initialize_pipelines([make_pipeline_config([make_source(GOOGLE)])])

        pipeline = service.get_pipeline("dogPlaces_pipeline")
        assert pipeline.status == PipelineStatus.IDLE
        assert pipeline.next_update > NOW
        assert service.get_pipelines_by_status(PipelineStatus.IDLE) == [pipeline]

    @pytest.mark.asyncio
    async def test_successful_run_updates_pipeline(self, clock, persistence):
        """Test the pipeline state after a successful run."""
        service = build_service(
            clock, persistence, {GOOGLE: stub_factory(GOOGLE, distinct_places("g", 2))}
        )
        service.initialize_pipelines([make_pipeline_config([make_source(GOOGLE)])])
        events = []
        for event_type in DataUpdateEventType:
            service.add_event_listener(event_type, events.append)

        result = await service.execute_pipeline("dogPlaces_pipeline")

        pipeline = service.get_pipeline("dogPlaces_pipeline")
        assert pipeline.status == PipelineStatus.COMPLETED
        assert pipeline.last_update == NOW
        # Following Sunday 02:00 Brussels (CET)
        assert pipeline.next_update == NOW.replace(day=16, hour=1)
        assert pipeline.last_error is None
        assert pipeline.metrics.total_runs == 1
        assert pipeline.metrics.successful_runs == 1
        assert pipeline.metrics.records_processed == 2
        assert pipeline.metrics.records_updated == 2
        assert result.pipeline_id == "dogPlaces_pipeline"
        assert [event.type for event in events] == [
            DataUpdateEventType.PIPELINE_STARTED,
            DataUpdateEventType.SOURCE_CONNECTED,
            DataUpdateEventType.DATA_VALIDATED,
            DataUpdateEventType.DATA_PERSISTED,
            DataUpdateEventType.PIPELINE_COMPLETED,
        ]
        assert persistence.calls[0][1] == DataType.DOG_PLACES

    @pytest.mark.asyncio
    async def test_failed_run_updates_pipeline(self, clock, persistence):
        """Test the pipeline state after a failed run."""
        service = build_service(
            clock, persistence, {GOOGLE: stub_factory(GOOGLE, error=DataAcquisitionError("down"))}
        )
        service.initialize_pipelines([make_pipeline_config([make_source(GOOGLE)])])
        failures = []
        service.add_event_listener(DataUpdateEventType.PIPELINE_FAILED, failures.append)

        with pytest.raises(DataAcquisitionError):
            await service.execute_pipeline("dogPlaces_pipeline")

        pipeline = service.get_pipeline("dogPlaces_pipeline")
        assert pipeline.status == PipelineStatus.FAILED
        assert pipeline.last_error == "down"
        assert pipeline.last_update is None
        assert pipeline.metrics.failed_runs == 1
        assert pipeline.metrics.successful_runs == 0
        assert failures[0].data["error"] == "down"


class TestEventListeners:
    """Test listener registration and isolation."""

    @pytest.mark.asyncio
    async def test_failing_listener_does_not_block_others(self, clock, persistence):
        """Test that an exception in one listener is isolated."""
        service = build_service(clock, persistence, {})
        received = []

        def broken(event):
            raise RuntimeError("listener bug")

        service.add_event_listener(DataUpdateEventType.PIPELINE_STARTED, broken)
        service.add_event_listener(DataUpdateEventType.PIPELINE_STARTED, received.append)

        event = await service.emit_event("p", DataUpdateEventType.PIPELINE_STARTED, {"k": 1})

        assert received == [event]
        assert event.data == {"k": 1}
        assert event.timestamp == NOW

    @pytest.mark.asyncio
    async def test_async_listener_is_awaited(self, clock, persistence):
        """Test that coroutine listeners run to completion."""
        service = build_service(clock, persistence, {})
        received = []

        async def listener(event):
            received.append(event.type)

        service.add_event_listener(DataUpdateEventType.DATA_PERSISTED, listener)
        await service.emit_event("p", DataUpdateEventType.DATA_PERSISTED)

        assert received == [DataUpdateEventType.DATA_PERSISTED]

    @pytest.mark.asyncio
    async def test_removed_listener_is_not_called(self, clock, persistence):
        """Test listener removal, including removing an unknown listener."""
        service = build_service(clock, persistence, {})
        received = []
        service.add_event_listener(DataUpdateEventType.PIPELINE_STARTED, received.append)
        service.remove_event_listener(DataUpdateEventType.PIPELINE_STARTED, received.append)
        service.remove_event_listener(DataUpdateEventType.QUOTA_WARNING, received.append)

        await service.emit_event("p", DataUpdateEventType.PIPELINE_STARTED)

        assert received == []


class TestReliability:
    """Test the source reliability score."""

    @pytest.fixture
    def service(self, clock, persistence):
        return build_service(clock, persistence, {})

    def test_success_keeps_perfect_score(self, service):
        """Test a healthy source."""
        source = make_source(GOOGLE)
        service.record_success(source, 0.5)

        assert source.reliability.score == 100.0
        assert source.reliability.avg_response_time == 0.5
        assert source.reliability.total_requests == 1

    def test_recent_failure_lowers_score(self, service):
        """Test that a failure just now zeroes the recency and error components."""
        source = make_source(GOOGLE)
        service.record_failure(source, 1.0)

        metrics = source.reliability
        assert metrics.uptime == 99.0
        assert metrics.error_rate == 100.0
        assert metrics.consecutive_failures == 1
        assert metrics.last_failure == NOW
        assert metrics.score == 39.6

    def test_success_resets_consecutive_failures(self, service):
        """Test that a success clears the failure streak."""
        source = make_source(GOOGLE)
        service.record_failure(source, 1.0)
        service.record_failure(source, 1.0)
        service.record_success(source, 1.0)

        assert source.reliability.consecutive_failures == 0
        assert source.reliability.failed_requests == 2
        assert source.reliability.total_requests == 3

    def test_recency_recovers_over_a_week(self, service):
        """Test the recency component a week after the last failure."""
        source = make_source(GOOGLE)
        source.reliability.last_failure = NOW - timedelta(days=7)

        assert service.calculate_reliability_score(source.reliability) == 100.0
