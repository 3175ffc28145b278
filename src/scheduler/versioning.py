"""
Versioning of fetched datasets: content hashing, comparison, history and
quality scoring.
"""

import hashlib
import json
import uuid
from datetime import datetime
from typing import Callable, Dict, List, Optional, Sequence

from shared.cache.redis_cache import RedisVersionStore
from shared.schemas.dto import AddressData
from shared.schemas.pipeline import (
    DataVersion,
    QualityMetrics,
    Record,
    VersionChanges,
    VersionComparison,
    VersionMetadata,
)
from shared.utils.helpers import is_valid_coordinate, utc_now
from shared.utils.logger import logger
from shared.utils.types import ComparisonReason, DataSourceProvider, DataType

# Records older than this score zero freshness
FRESHNESS_WINDOW_SECONDS = 30 * 24 * 60 * 60


class DataVersionService:
    """
    Keeps an in-memory map of DataVersion records, optionally mirrored to a
    RedisVersionStore.
    """

    def __init__(
        self,
        store: Optional[RedisVersionStore] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.versions: Dict[str, DataVersion] = {}
        self.store = store
        self.clock = clock

    def load_from_store(self) -> int:
        """
        Rehydrate versions from the store.

        Returns:
            Number of versions loaded
        """
        if not self.store:
            return 0
        loaded = sorted(self.store.load_all(), key=lambda v: v.timestamp)
        for version in loaded:
            self.versions[version.id] = version
        logger.info(f"Loaded {len(loaded)} data versions from store")
        return len(loaded)

    @staticmethod
    def _canonical_entry(record: Record) -> Dict:
        key = record.formatted_address if isinstance(record, AddressData) else record.name
        location = record.location
        return {
            "id": record.id,
            "location": [location.latitude, location.longitude] if location else None,
            "lastUpdated": record.last_updated.isoformat() if record.last_updated else None,
            "key": key,
        }

    def calculate_hash(self, data: Sequence[Record]) -> str:
        """
        SHA-256 over the canonical entries sorted by id, so that record order
        does not change the hash.
        """
        entries = sorted(
            (self._canonical_entry(record) for record in data),
            key=lambda entry: (str(entry["id"]), str(entry["key"])),
        )
        canonical = json.dumps(entries, sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(canonical.encode("utf-8")).hexdigest()

    def create_version(
        self,
        data_type: DataType,
        source: DataSourceProvider,
        data: Sequence[Record],
        metadata: Optional[VersionMetadata] = None,
    ) -> DataVersion:
        """
        Fingerprint a dataset and store the resulting version.

        Args:
            data_type: Dataset the records belong to
            source: Provider that produced the records
            data: The records
            metadata: Processing time, errors and warnings of the fetch

        Returns:
            The stored DataVersion
        """
        timestamp = self.clock()
        version = DataVersion(
            id=(
                f"{data_type.value}_{source.value}_"
                f"{int(timestamp.timestamp() * 1000)}_{uuid.uuid4().hex[:8]}"
            ),
            timestamp=timestamp,
            hash=self.calculate_hash(data),
            source=source,
            type=data_type,
            record_count=len(data),
            metadata=metadata or VersionMetadata(),
        )
        self.versions[version.id] = version
        if self.store:
            self.store.save(version)
        logger.debug(
            f"Created version {version.id} ({version.record_count} records, hash {version.hash[:12]})"
        )
        return version

    def compare_versions(
        self, current: Optional[DataVersion], new: DataVersion
    ) -> VersionComparison:
        """
        Decide whether `new` needs to be persisted.

        The added/modified/removed counts are estimated from the record-count
        delta only. They are not a diff: when records are both added and removed
        between two versions the estimate is wrong.
        """
        if current is None:
            return VersionComparison(
                needs_update=True,
                reason=ComparisonReason.NO_PREVIOUS_VERSION,
                changes=VersionChanges(added=new.record_count),
            )

        elapsed = (new.timestamp - current.timestamp).total_seconds()

        if current.hash == new.hash:
            return VersionComparison(
                needs_update=False,
                reason=ComparisonReason.IDENTICAL_HASH,
                previous_version=current,
                time_since_last_update=elapsed,
            )

        delta = new.record_count - current.record_count
        return VersionComparison(
            needs_update=True,
            reason=ComparisonReason.DATA_CHANGED,
            changes=VersionChanges(
                added=max(0, delta), modified=abs(delta), removed=max(0, -delta)
            ),
            previous_version=current,
            time_since_last_update=elapsed,
        )

    def get_version_history(
        self, data_type: DataType, source: DataSourceProvider, limit: int = 10
    ) -> List[DataVersion]:
        """Versions for (type, source), newest first. Ties go to the later insert."""
        matching = [
            (index, version)
            for index, version in enumerate(self.versions.values())
            if version.type == data_type and version.source == source
        ]
        matching.sort(key=lambda item: (item[1].timestamp, item[0]), reverse=True)
        return [version for _, version in matching[:limit]]

    def get_latest_version(
        self, data_type: DataType, source: DataSourceProvider
    ) -> Optional[DataVersion]:
        history = self.get_version_history(data_type, source, limit=1)
        return history[0] if history else None

    def cleanup_old_versions(self, keep_count: int = 5) -> int:
        """
        Keep the `keep_count` newest versions per (type, source).

        Returns:
            Number of versions removed
        """
        groups = {(v.type, v.source) for v in self.versions.values()}
        removed: List[str] = []
        for data_type, source in groups:
            history = self.get_version_history(data_type, source, limit=len(self.versions))
            removed.extend(version.id for version in history[keep_count:])

        for version_id in removed:
            del self.versions[version_id]
        if removed:
            if self.store:
                self.store.delete(removed)
            logger.info(f"Cleaned up {len(removed)} old data versions")
        return len(removed)

    def discard_versions(self, version_ids: Sequence[str]) -> int:
        """
        Forget versions whose data never reached persistence.

        Returns:
            Number of versions removed
        """
        removed = [vid for vid in version_ids if self.versions.pop(vid, None) is not None]
        if removed:
            if self.store:
                self.store.delete(removed)
            logger.info(f"Discarded {len(removed)} unpersisted data versions")
        return len(removed)

    def calculate_quality_metrics(self, data: Sequence[Record]) -> QualityMetrics:
        """
        Score a dataset on completeness, coordinate accuracy and freshness.

        Args:
            data: Records to score

        Returns:
            QualityMetrics with 0-100 integer scores, all zero for no data
        """
        if not data:
            return QualityMetrics()

        now = self.clock()
        completeness_total = 0.0
        accurate = 0
        ages: List[float] = []

        for record in data:
            present = sum(
                1
                for value in (record.id, record.location, record.last_updated)
                if value is not None and value != ""
            )
            completeness_total += present / 3

            location = record.location
            if location and is_valid_coordinate(location.latitude, location.longitude):
                accurate += 1

            if record.last_updated:
                ages.append(max(0.0, (now - record.last_updated).total_seconds()))

        completeness = completeness_total / len(data) * 100
        accuracy = accurate / len(data) * 100
        if ages:
            average_age = sum(ages) / len(ages)
            freshness = max(0.0, 1 - average_age / FRESHNESS_WINDOW_SECONDS) * 100
        else:
            freshness = 0.0

        return QualityMetrics(
            completeness=round(completeness),
            accuracy=round(accuracy),
            freshness=round(freshness),
            overall=round((completeness + accuracy + freshness) / 3),
        )
