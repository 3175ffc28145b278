"""
Utility functions and shared resources.
"""

from .configs import api_configs, base_configs, firestore_configs, redis_config
from .errors import (
    DataAcquisitionError,
    PersistenceError,
    PipelineAlreadyRunningError,
    PipelineNotFoundError,
    QuotaExceededError,
    RedisError,
    ValidationError,
)
from .helpers import (
    DataEncoder,
    address_document_id,
    generate_search_terms,
    is_within_bounds,
    utc_now,
)
from .logger import logger
from .types import DataSourceProvider, DataType, ErrorType
