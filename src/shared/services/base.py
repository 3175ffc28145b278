"""
Adapter interfaces shared by every data provider and persistence backend.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import aiohttp

from shared.schemas.dto import AddressData, DogPlaceData
from shared.schemas.pipeline import PersistResult, Record, SourceConfig
from shared.utils.errors import DataAcquisitionError
from shared.utils.logger import logger
from shared.utils.types import DataSourceProvider, DataType, ErrorType


class SourceAdapter(ABC):
    """
    Base class for provider adapters.

    Subclasses override the fetch method for each data type they serve; the
    defaults raise INVALID_TYPE so a type-restricted provider fails loudly.
    """

    provider: DataSourceProvider

    def __init__(self, config: SourceConfig):
        self.config = config

    async def get_all_addresses(self) -> List[AddressData]:
        raise DataAcquisitionError(
            message=f"{self.provider.value} does not provide address data",
            error_type=ErrorType.INVALID_TYPE,
            provider=self.provider,
            status_code=400,
        )

    async def get_all_dog_places(self) -> List[DogPlaceData]:
        raise DataAcquisitionError(
            message=f"{self.provider.value} does not provide dog place data",
            error_type=ErrorType.INVALID_TYPE,
            provider=self.provider,
            status_code=400,
        )

    async def fetch(self, data_type: DataType) -> List[Record]:
        if data_type == DataType.ADDRESSES:
            return await self.get_all_addresses()
        return await self.get_all_dog_places()

    async def _request_json(
        self,
        session: aiohttp.ClientSession,
        url: str,
        params: Optional[Dict[str, Any]] = None,
        data: Optional[str] = None,
        method: str = "GET",
    ) -> Any:
        """
        Perform one HTTP call and decode the JSON body.

        Args:
            session: Open aiohttp session
            url: Absolute URL
            params: Query string parameters
            data: Raw request body, for POST
            method: HTTP method

        Returns:
            The decoded JSON payload

        Raises:
            DataAcquisitionError: On transport errors, non-2xx responses or
                bodies that are not JSON
        """
        headers = {**self.config.headers}
        try:
            async with session.request(
                method,
                url,
                params=params,
                data=data,
                headers=headers,
                timeout=aiohttp.ClientTimeout(total=self.config.timeout),
            ) as response:
                if response.status >= 400:
                    body = await response.text()
                    raise DataAcquisitionError(
                        message=f"{self.provider.value} returned HTTP {response.status}: {body[:200]}",
                        error_type=ErrorType.HTTP_ERROR,
                        provider=self.provider,
                        retryable=response.status >= 500 or response.status == 429,
                        metadata={"url": url, "status": response.status},
                        status_code=response.status,
                    )
                return await response.json(content_type=None)
        except DataAcquisitionError:
            raise
        except aiohttp.ClientError as e:
            logger.error(f"{self.provider.value} request to {url} failed: {e}")
            raise DataAcquisitionError(
                message=f"{self.provider.value} request failed: {e}",
                error_type=ErrorType.FETCH_ERROR,
                provider=self.provider,
                retryable=True,
                metadata={"url": url},
            )
        except TimeoutError as e:
            raise DataAcquisitionError(
                message=f"{self.provider.value} request timed out after {self.config.timeout}s",
                error_type=ErrorType.FETCH_ERROR,
                provider=self.provider,
                retryable=True,
                metadata={"url": url},
            ) from e
        except ValueError as e:
            raise DataAcquisitionError(
                message=f"{self.provider.value} returned invalid JSON: {e}",
                error_type=ErrorType.PARSE_ERROR,
                provider=self.provider,
                metadata={"url": url},
            )


class PersistenceAdapter(ABC):
    """Writes validated records to the backing store."""

    @abstractmethod
    async def batch_upsert(self, data: List[Record], data_type: DataType) -> PersistResult:
        """
        Upsert records, chunking internally.

        Args:
            data: Records to write
            data_type: Dataset the records belong to

        Returns:
            PersistResult with persisted and skipped counts and error strings
        """
