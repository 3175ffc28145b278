from .dto import (
    AddressData,
    AddressMetadata,
    ContactInfo,
    DogPlaceData,
    DogPlaceMetadata,
    GeoLocation,
)
from .pipeline import (
    DataSource,
    DataUpdateEvent,
    DataUpdatePipeline,
    DataVersion,
    PersistResult,
    PipelineConfig,
    PipelineConfiguration,
    PipelineExecutionResult,
    QualityMetrics,
    QuotaConfig,
    Record,
    ReliabilityMetrics,
    SourceConfig,
    VersionComparison,
)
