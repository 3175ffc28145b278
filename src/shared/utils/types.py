from enum import Enum
from typing import Dict, TypedDict


class ErrorType(Enum):
    """
    Enumeration for various error types used in the application.

    Attributes:
        GENERAL_ERROR: Represents a general error that does not fall into specific categories.
        HTTP_ERROR: Represents an error related to HTTP requests to a data provider.
        FETCH_ERROR: Represents an error that occurs during data fetching.
        PARSE_ERROR: Represents an error that occurs while parsing a provider payload.
        UNSUPPORTED_SOURCE: No adapter is registered for the requested provider.
        INVALID_TYPE: The provider cannot serve the requested data type.
        QUOTA_EXCEEDED: The daily request quota of a provider is exhausted.
        VALIDATION_ERROR: Represents an error related to data validation failures.
        CONFIG_ERROR: Represents an invalid or incomplete configuration.
        PERSISTENCE_ERROR: Represents an error related to Firestore writes or reads.
        REDIS_ERROR: Represents an error related to Redis operations.
    """

    GENERAL_ERROR = "GENERAL_ERROR"
    HTTP_ERROR = "HTTP_ERROR"
    FETCH_ERROR = "FETCH_ERROR"
    PARSE_ERROR = "PARSE_ERROR"
    UNSUPPORTED_SOURCE = "UNSUPPORTED_SOURCE"
    INVALID_TYPE = "INVALID_TYPE"
    QUOTA_EXCEEDED = "QUOTA_EXCEEDED"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    CONFIG_ERROR = "CONFIG_ERROR"
    PERSISTENCE_ERROR = "PERSISTENCE_ERROR"
    REDIS_ERROR = "REDIS_ERROR"


class DataType(Enum):
    """The two datasets the pipelines maintain."""

    ADDRESSES = "addresses"
    DOG_PLACES = "dogPlaces"


class DataSourceProvider(Enum):
    URBIS = "URBIS"
    OSM = "OSM"
    GOOGLE = "Google"
    FOURSQUARE = "Foursquare"
    MANUAL = "Manual"


class PipelineStatus(Enum):
    """
    Lifecycle state of a pipeline.

    Attributes:
        IDLE: Registered, never run.
        SCHEDULED: A timer is armed for the next run.
        RUNNING: An execution is in flight.
        COMPLETED: The last execution succeeded.
        FAILED: The last execution raised.
        PAUSED: Reserved, never set by the scheduler.
        CANCELLED: Reserved, never set by the scheduler.
    """

    IDLE = "idle"
    SCHEDULED = "scheduled"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    PAUSED = "paused"
    CANCELLED = "cancelled"


class UpdateFrequency(Enum):
    BIANNUAL = "biannual"
    QUARTERLY = "quarterly"
    MONTHLY = "monthly"
    WEEKLY = "weekly"
    DAILY = "daily"
    HOURLY = "hourly"


class DataUpdateEventType(Enum):
    PIPELINE_STARTED = "pipeline_started"
    PIPELINE_COMPLETED = "pipeline_completed"
    PIPELINE_FAILED = "pipeline_failed"
    SOURCE_CONNECTED = "source_connected"
    SOURCE_FAILED = "source_failed"
    DATA_VALIDATED = "data_validated"
    DATA_PERSISTED = "data_persisted"
    QUOTA_WARNING = "quota_warning"
    QUOTA_EXCEEDED = "quota_exceeded"


class DogPlaceType(Enum):
    PARK = "park"
    VETERINARY_CARE = "veterinary_care"
    PET_STORE = "pet_store"
    RESTAURANT = "restaurant"
    GROOMING = "grooming"
    TRAINING = "training"
    DAYCARE = "daycare"


class ComparisonReason(Enum):
    NO_PREVIOUS_VERSION = "NO_PREVIOUS_VERSION"
    IDENTICAL_HASH = "IDENTICAL_HASH"
    DATA_CHANGED = "DATA_CHANGED"


class Environment(Enum):
    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"


class Coordinates(TypedDict):
    latitude: float
    longitude: float


class BoundingBox(TypedDict):
    """
    A latitude/longitude rectangle.

    Attributes:
        min_lat (float): Southern edge.
        max_lat (float): Northern edge.
        min_lng (float): Western edge.
        max_lng (float): Eastern edge.
    """

    min_lat: float
    max_lat: float
    min_lng: float
    max_lng: float


class CliResult(TypedDict):
    status: str
    data: Dict
