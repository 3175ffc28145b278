"""
Error handling for the application.
"""

from datetime import datetime
from typing import Any, Dict, Optional

from shared.utils.types import DataSourceProvider, ErrorType


class DataAcquisitionError(Exception):
    """Custom exception for failures while pulling data from a provider.

    Common status codes:
    - 502: Bad Gateway (default) - Provider returned an error or bad payload
    - 404: Not Found - No adapter registered for the provider
    - 400: Bad Request - Provider cannot serve the requested data type
    - 429: Too Many Requests - Quota exhausted
    """

    def __init__(
        self,
        message: str,
        error_type: ErrorType = ErrorType.GENERAL_ERROR,
        provider: Optional[DataSourceProvider] = None,
        retryable: bool = False,
        metadata: Optional[Dict[str, Any]] = None,
        status_code: int = 502,
    ):
        """
        Initialize a DataAcquisitionError.

        Args:
            message (str): A human-readable error message.
            error_type (ErrorType): The category of the error (default: GENERAL_ERROR).
            provider (DataSourceProvider): The provider that failed, if known.
            retryable (bool): Whether retrying the same call may succeed.
            metadata (dict): Extra context attached to the error.
            status_code (int): HTTP-style status code associated with the error (default: 502).
        """
        self.message = message
        self.error_type = error_type
        self.provider = provider
        self.retryable = retryable
        self.metadata = metadata or {}
        self.status_code = status_code
        super().__init__(self.message)

    @property
    def code(self) -> str:
        return self.error_type.value


class QuotaExceededError(DataAcquisitionError):
    """Raised when a provider's daily quota is used up."""

    def __init__(self, provider: DataSourceProvider, reset_time: datetime):
        super().__init__(
            message=f"Quota exceeded for {provider.value}, resets at {reset_time.isoformat()}",
            error_type=ErrorType.QUOTA_EXCEEDED,
            provider=provider,
            retryable=True,
            metadata={"reset_time": reset_time.isoformat()},
            status_code=429,
        )
        self.reset_time = reset_time


class ValidationError(DataAcquisitionError):
    """Raised for a single record that fails validation. Never retryable."""

    def __init__(
        self,
        message: str,
        provider: Optional[DataSourceProvider] = None,
        invalid_data: Any = None,
    ):
        super().__init__(
            message=message,
            error_type=ErrorType.VALIDATION_ERROR,
            provider=provider,
            retryable=False,
            metadata={"invalid_data": repr(invalid_data)},
            status_code=400,
        )
        self.invalid_data = invalid_data


class PersistenceError(Exception):
    """Custom exception for when Firestore reads or writes fail.

    Common status codes:
    - 503: Service Unavailable (default) - Firestore is down or unreachable
    - 500: Internal Server Error - Credentials missing or invalid
    """

    def __init__(
        self,
        message: str,
        error_type: ErrorType = ErrorType.PERSISTENCE_ERROR,
        status_code: int = 503,
    ):
        """
        Initialize a PersistenceError.

        Args:
            message (str): A human-readable error message.
            error_type (ErrorType): The category of the error (default: PERSISTENCE_ERROR).
            status_code (int): HTTP-style status code associated with the error (default: 503).
        """
        self.message = message
        self.error_type = error_type
        self.status_code = status_code
        super().__init__(self.message)


class RedisError(Exception):
    """Custom exception for Redis errors.

    Common status codes:
    - 503: Service Unavailable (default) - Redis service is down or unreachable
    """

    def __init__(
        self,
        message: str,
        error_type: ErrorType = ErrorType.REDIS_ERROR,
        status_code: int = 503,
    ):
        self.message = message
        self.error_type = error_type
        self.status_code = status_code
        super().__init__(self.message)


class PipelineNotFoundError(RuntimeError):
    def __init__(self, pipeline_id: str):
        super().__init__(f"Pipeline {pipeline_id} not found")
        self.pipeline_id = pipeline_id


class PipelineAlreadyRunningError(RuntimeError):
    def __init__(self, pipeline_id: str):
        super().__init__(f"Pipeline {pipeline_id} is already running")
        self.pipeline_id = pipeline_id
