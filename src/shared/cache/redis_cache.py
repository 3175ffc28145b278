"""
Redis store for data versions, so version history survives restarts.
"""

import json
from datetime import datetime
from typing import List

import redis

from shared.schemas.pipeline import DataVersion, VersionMetadata
from shared.utils.configs import redis_config
from shared.utils.errors import RedisError
from shared.utils.helpers import DataEncoder
from shared.utils.logger import logger
from shared.utils.types import DataSourceProvider, DataType, ErrorType


def version_from_dict(raw: dict) -> DataVersion:
    return DataVersion(
        id=raw["id"],
        timestamp=datetime.fromisoformat(raw["timestamp"]),
        hash=raw["hash"],
        source=DataSourceProvider(raw["source"]),
        type=DataType(raw["type"]),
        record_count=raw["record_count"],
        metadata=VersionMetadata(**raw.get("metadata", {})),
    )


class RedisVersionStore:
    """
    Keeps every DataVersion as a JSON field of one Redis hash.

    If Redis cannot be reached the store disables itself and every call
    becomes a logged no-op.
    """

    def __init__(self, redis_client=None, key: str = redis_config["versions_key"]):
        """Initialize the Redis connection."""
        self.key = key
        if redis_client is not None:
            self.redis_client = redis_client
            return
        try:
            self.redis_client = redis.from_url(
                redis_config["redis_url"],
                decode_responses=True,
                socket_timeout=redis_config["redis_socket_timeout"],
                socket_connect_timeout=redis_config["redis_socket_connect_timeout"],
                retry_on_timeout=redis_config["redis_retry_on_timeout"],
            )
        except Exception as e:
            logger.error(f"Failed to connect to Redis: {str(e)}")
            self.redis_client = None
            logger.warning("Using null Redis client - version store disabled")

    def is_connected(self) -> bool:
        """Check if Redis connection is working."""
        if not self.redis_client:
            return False
        try:
            self.redis_client.ping()
            return True
        except Exception:
            return False

    def save(self, version: DataVersion) -> bool:
        """
        Store one version.

        Returns:
            True if written, False when Redis is unavailable or the write failed
        """
        if not self.is_connected():
            logger.warning("Redis not connected - skipping version save")
            return False
        try:
            self.redis_client.hset(self.key, version.id, json.dumps(version, cls=DataEncoder))
            return True
        except Exception as e:
            logger.error(f"Error saving version {version.id}: {str(e)}")
            return False

    def delete(self, version_ids: List[str]) -> bool:
        if not version_ids or not self.is_connected():
            return False
        try:
            self.redis_client.hdel(self.key, *version_ids)
            logger.info(f"Deleted {len(version_ids)} versions from Redis")
            return True
        except Exception as e:
            logger.error(f"Error deleting versions: {str(e)}")
            return False

    def load_all(self) -> List[DataVersion]:
        """
        Load every stored version.

        Raises:
            RedisError: If stored data cannot be decoded
        """
        if not self.is_connected():
            logger.warning("Redis not connected - no versions loaded")
            return []
        try:
            raw_versions = self.redis_client.hgetall(self.key)
            return [version_from_dict(json.loads(raw)) for raw in raw_versions.values()]
        except (ValueError, KeyError, TypeError) as e:
            logger.error(f"redis_cache.load_all: Failed to decode versions: {str(e)}")
            raise RedisError(
                message=f"Failed to decode stored versions: {str(e)}",
                error_type=ErrorType.REDIS_ERROR,
                status_code=500,
            )
