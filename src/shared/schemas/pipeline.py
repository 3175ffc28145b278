"""
Schemas for pipelines, sources, data versions and lifecycle events.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from shared.schemas.dto import AddressData, DogPlaceData
from shared.utils.helpers import utc_now
from shared.utils.types import (
    ComparisonReason,
    DataSourceProvider,
    DataType,
    DataUpdateEventType,
    PipelineStatus,
    UpdateFrequency,
)

Record = Union[AddressData, DogPlaceData]


@dataclass
class VersionMetadata:
    processing_time: float = 0.0
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    api_version: Optional[str] = None


@dataclass(frozen=True)
class DataVersion:
    """
    Fingerprint of one fetch result.

    Attributes:
        id (str): Generated version id.
        timestamp (datetime): When the version was created.
        hash (str): SHA-256 of the canonical record listing.
        source (DataSourceProvider): Provider that produced the data.
        type (DataType): Dataset the version belongs to.
        record_count (int): Number of records hashed.
        metadata (VersionMetadata): Acquisition details.
    """

    id: str
    timestamp: datetime
    hash: str
    source: DataSourceProvider
    type: DataType
    record_count: int
    metadata: VersionMetadata = field(default_factory=VersionMetadata)


@dataclass
class VersionChanges:
    added: int = 0
    modified: int = 0
    removed: int = 0


@dataclass
class VersionComparison:
    needs_update: bool
    reason: ComparisonReason
    changes: VersionChanges = field(default_factory=VersionChanges)
    previous_version: Optional[DataVersion] = None
    time_since_last_update: Optional[float] = None


@dataclass
class QualityMetrics:
    completeness: int = 0
    accuracy: int = 0
    freshness: int = 0
    overall: int = 0


@dataclass
class QuotaConfig:
    """
    Request quota of a source.

    Attributes:
        daily (int): Requests allowed per day.
        monthly (int): Requests allowed per month.
        current (int): Requests used since `reset_time` was last passed.
        reset_time (datetime): When `current` goes back to zero.
        warning_threshold (int): Usage percentage that triggers a warning.
    """

    daily: int
    monthly: int
    current: int = 0
    reset_time: Optional[datetime] = None
    warning_threshold: int = 80


@dataclass
class ReliabilityMetrics:
    """
    Running health record of a source.

    Attributes:
        score (float): Blended 0-100 health score.
        uptime (float): Percentage, raised on success and lowered on failure.
        avg_response_time (float): Seconds, running mean over all attempts.
        error_rate (float): Percentage of failed attempts.
        consecutive_failures (int): Failures since the last success.
        last_failure (datetime): When the source last failed.
        total_requests (int): Attempts recorded.
        failed_requests (int): Failed attempts recorded.
    """

    score: float = 100.0
    uptime: float = 100.0
    avg_response_time: float = 0.0
    error_rate: float = 0.0
    consecutive_failures: int = 0
    last_failure: Optional[datetime] = None
    total_requests: int = 0
    failed_requests: int = 0


@dataclass
class SourceConfig:
    """
    Provider-specific settings handed to a source adapter.

    `timeout` (seconds) doubles as the pause taken before falling back to
    the next source.
    """

    base_url: str = ""
    api_key: Optional[str] = None
    timeout: float = 10.0
    rate_limit: float = 1.0
    headers: Dict[str, str] = field(default_factory=dict)


@dataclass
class DataSource:
    id: str
    name: str
    provider: DataSourceProvider
    priority: int
    is_active: bool
    quota: QuotaConfig
    reliability: ReliabilityMetrics
    config: SourceConfig = field(default_factory=SourceConfig)


@dataclass
class ThrottlingConfig:
    requests_per_second: int = 1
    requests_per_minute: int = 60
    requests_per_hour: int = 3600
    burst_limit: int = 5


@dataclass
class ValidationConfig:
    required_fields: List[str] = field(default_factory=list)
    geo_validation: bool = True
    duplicate_detection: bool = True
    quality_threshold: int = 80


@dataclass
class FallbackConfig:
    """When disabled, the first failing source fails the whole run."""

    enabled: bool = True


@dataclass
class PipelineConfig:
    max_retries: int = 3
    timeout: float = 3600.0
    batch_size: int = 500
    throttling: ThrottlingConfig = field(default_factory=ThrottlingConfig)
    validation: ValidationConfig = field(default_factory=ValidationConfig)
    fallback: FallbackConfig = field(default_factory=FallbackConfig)


@dataclass
class PipelineMetrics:
    total_runs: int = 0
    successful_runs: int = 0
    failed_runs: int = 0
    average_runtime: float = 0.0
    last_run_duration: float = 0.0
    records_processed: int = 0
    records_updated: int = 0
    records_skipped: int = 0
    quality_score: int = 0


@dataclass
class PipelineConfiguration:
    """Static description of a pipeline, built from environment settings."""

    id: str
    data_type: DataType
    frequency: UpdateFrequency
    sources: List[DataSource]
    config: PipelineConfig = field(default_factory=PipelineConfig)


@dataclass
class DataUpdatePipeline:
    """
    A recurring data-acquisition job for one data type.

    Attributes:
        id (str): Pipeline id, "<type>_pipeline".
        data_type (DataType): Dataset this pipeline maintains.
        frequency (UpdateFrequency): Strategy key for scheduling.
        sources (List[DataSource]): Candidate providers, any order.
        status (PipelineStatus): Current lifecycle state.
        config (PipelineConfig): Retries, batching, validation and fallback rules.
        metrics (PipelineMetrics): Cumulative run statistics.
        last_update (datetime): When the last execution finished.
        next_update (datetime): When the next execution is due.
        last_error (str): Message of the most recent failure.
    """

    id: str
    data_type: DataType
    frequency: UpdateFrequency
    sources: List[DataSource]
    status: PipelineStatus = PipelineStatus.IDLE
    config: PipelineConfig = field(default_factory=PipelineConfig)
    metrics: PipelineMetrics = field(default_factory=PipelineMetrics)
    last_update: Optional[datetime] = None
    next_update: Optional[datetime] = None
    last_error: Optional[str] = None


@dataclass
class PersistResult:
    records_persisted: int = 0
    records_skipped: int = 0
    errors: List[str] = field(default_factory=list)


@dataclass
class PipelineExecutionResult:
    pipeline_id: str
    success: bool
    records_processed: int = 0
    records_persisted: int = 0
    records_skipped: int = 0
    quality_score: int = 0
    sources_used: List[DataSourceProvider] = field(default_factory=list)
    duration: float = 0.0
    errors: List[str] = field(default_factory=list)


@dataclass
class DataUpdateEvent:
    """A lifecycle notification. Fire-and-forget, never persisted."""

    pipeline_id: str
    type: DataUpdateEventType
    data: Dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: datetime = field(default_factory=utc_now)
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class MonitoringConfig:
    enable_metrics: bool = True
    enable_logs: bool = True
    log_level: str = "info"
    metrics_retention_days: int = 30


@dataclass
class NotificationConfig:
    enable_slack: bool = False
    enable_email: bool = False
    slack_webhook_url: Optional[str] = None
    email_recipients: List[str] = field(default_factory=list)
    notify_on_success: bool = False
    notify_on_failure: bool = True
    notify_on_quota_warning: bool = True


@dataclass
class FeatureFlags:
    enable_urbis: bool = True
    enable_osm: bool = True
    enable_google: bool = True
    enable_foursquare: bool = True
    enable_fallback: bool = True
    enable_validation: bool = True
    enable_deduplication: bool = True


@dataclass
class SchedulingConfig:
    environment: str = "development"
    enabled_pipelines: List[DataType] = field(
        default_factory=lambda: [DataType.ADDRESSES, DataType.DOG_PLACES]
    )
    global_timeout: float = 300.0
    max_concurrent_pipelines: int = 1
    monitoring: MonitoringConfig = field(default_factory=MonitoringConfig)
    notifications: NotificationConfig = field(default_factory=NotificationConfig)
    features: FeatureFlags = field(default_factory=FeatureFlags)


@dataclass
class SchedulerStatus:
    is_running: bool
    environment: str
    total_pipelines: int
    pipelines_by_status: Dict[str, int]
    next_scheduled_update: Optional[datetime]
    uptime: float
