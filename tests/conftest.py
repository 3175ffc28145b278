"""
Shared fixtures and builders for the test suite.
"""

from datetime import datetime, timezone
from typing import List, Optional
from unittest.mock import Mock

import pytest

from shared.schemas.dto import AddressData, DogPlaceData, GeoLocation
from shared.schemas.pipeline import (
    DataSource,
    FallbackConfig,
    PersistResult,
    PipelineConfig,
    PipelineConfiguration,
    QuotaConfig,
    ReliabilityMetrics,
    SchedulingConfig,
    SourceConfig,
    ValidationConfig,
)
from shared.services.base import PersistenceAdapter, SourceAdapter
from shared.utils.types import DataSourceProvider, DataType, DogPlaceType, UpdateFrequency

# A Wednesday
NOW = datetime(2025, 3, 12, 10, 0, tzinfo=timezone.utc)


def make_address(
    id: str = "addr-1",
    latitude: float = 50.8466,
    longitude: float = 4.3516,
    place_id: Optional[str] = None,
    formatted_address: str = "Grand Place 1, 1000 Bruxelles",
    source: DataSourceProvider = DataSourceProvider.OSM,
    last_updated: datetime = NOW,
) -> AddressData:
    return AddressData(
        id=id,
        formatted_address=formatted_address,
        location=GeoLocation(latitude=latitude, longitude=longitude),
        source=source,
        street_name="Grand Place",
        street_number="1",
        postal_code="1000",
        municipality="Bruxelles",
        place_id=place_id,
        last_updated=last_updated,
    )


def make_place(
    id: str = "place-1",
    name: str = "Parc Josaphat",
    latitude: float = 50.8610,
    longitude: float = 4.3780,
    place_id: Optional[str] = None,
    place_type: DogPlaceType = DogPlaceType.PARK,
    source: DataSourceProvider = DataSourceProvider.GOOGLE,
    last_updated: datetime = NOW,
) -> DogPlaceData:
    return DogPlaceData(
        id=id,
        name=name,
        place_type=place_type,
        location=GeoLocation(latitude=latitude, longitude=longitude),
        source=source,
        place_id=place_id,
        last_updated=last_updated,
    )


def make_source(
    provider: DataSourceProvider,
    priority: int = 1,
    is_active: bool = True,
    daily: int = 100,
    current: int = 0,
    warning_threshold: int = 80,
) -> DataSource:
    # Zero rate limit and timeout keep tests free of throttling and fallback pauses
    return DataSource(
        id=f"{provider.value.lower()}_test",
        name=provider.value,
        provider=provider,
        priority=priority,
        is_active=is_active,
        quota=QuotaConfig(
            daily=daily, monthly=daily * 30, current=current, warning_threshold=warning_threshold
        ),
        reliability=ReliabilityMetrics(),
        config=SourceConfig(timeout=0, rate_limit=0),
    )


def make_pipeline_config(
    sources: List[DataSource],
    data_type: DataType = DataType.DOG_PLACES,
    fallback: bool = True,
    required_fields: Optional[List[str]] = None,
    duplicate_detection: bool = True,
    quality_threshold: int = 80,
    max_retries: int = 3,
) -> PipelineConfiguration:
    frequency = (
        UpdateFrequency.BIANNUAL if data_type == DataType.ADDRESSES else UpdateFrequency.WEEKLY
    )
    return PipelineConfiguration(
        id=f"{data_type.value}_pipeline",
        data_type=data_type,
        frequency=frequency,
        sources=sources,
        config=PipelineConfig(
            max_retries=max_retries,
            validation=ValidationConfig(
                required_fields=required_fields if required_fields is not None else ["id", "location"],
                geo_validation=True,
                duplicate_detection=duplicate_detection,
                quality_threshold=quality_threshold,
            ),
            fallback=FallbackConfig(enabled=fallback),
        ),
    )


class StubAdapter(SourceAdapter):
    """Adapter returning canned records or raising a canned error."""

    def __init__(self, config, provider, records=None, error=None, calls=None):
        super().__init__(config)
        self.provider = provider
        self.records = records or []
        self.error = error
        self.calls = calls if calls is not None else []

    def _result(self):
        self.calls.append(self.provider)
        if self.error is not None:
            raise self.error
        return list(self.records)

    async def get_all_addresses(self):
        return self._result()

    async def get_all_dog_places(self):
        return self._result()


def stub_factory(provider, records=None, error=None, calls=None):
    return lambda config: StubAdapter(config, provider, records, error, calls)


class RecordingPersistence(PersistenceAdapter):
    def __init__(self):
        self.calls = []

    async def batch_upsert(self, data, data_type):
        self.calls.append((list(data), data_type))
        return PersistResult(records_persisted=len(data))


@pytest.fixture
def clock():
    return lambda: NOW


@pytest.fixture
def persistence():
    return RecordingPersistence()


@pytest.fixture
def calls():
    return []


def make_config_factory(configurations, max_concurrent=1):
    factory = Mock()
    factory.create_configuration.return_value = SchedulingConfig(
        max_concurrent_pipelines=max_concurrent
    )
    factory.build_pipeline_configurations.return_value = configurations
    return factory
