"""
Tests for Firestore persistence and the Redis version store.
"""

import json
from unittest.mock import Mock, patch

import pytest
from conftest import NOW, make_address, make_place

from scheduler.versioning import DataVersionService
from shared.cache.redis_cache import RedisVersionStore, version_from_dict
from shared.services.firestore_service import FirestoreService
from shared.utils.errors import PersistenceError, RedisError
from shared.utils.helpers import DataEncoder
from shared.utils.types import DataSourceProvider, DataType


def make_client(batches):
    client = Mock()
    client.batch.side_effect = batches
    return client


class TestFirestoreService:
    """Test chunked merge writes."""

    def test_document_ids(self):
        """Test that addresses get composite ids and places keep theirs."""
        address = make_address("osm_node_1")
        assert FirestoreService.document_id(address) == "bruxelles_grandplace_1"
        assert FirestoreService.document_id(make_place("ChIJ1")) == "ChIJ1"

    def test_collection_names(self):
        """Test the default collections."""
        assert FirestoreService.collection_name(DataType.ADDRESSES) == "brussels_addresses"
        assert FirestoreService.collection_name(DataType.DOG_PLACES) == "brussels_places"

    def test_batch_size_is_capped(self):
        """Test that batches never exceed the Firestore limit."""
        assert FirestoreService(client=Mock(), batch_size=2000).batch_size == 500

    @pytest.mark.asyncio
    async def test_upsert_chunks_records(self):
        """Test that records are split into batches and merged."""
        batches = [Mock(), Mock()]
        client = make_client(batches)
        service = FirestoreService(client=client, batch_size=2)
        places = [make_place(f"p{i}") for i in range(3)]

        result = await service.batch_upsert(places, DataType.DOG_PLACES)

        assert result.records_persisted == 3
        assert result.records_skipped == 0
        assert batches[0].set.call_count == 2
        assert batches[1].set.call_count == 1
        batches[0].commit.assert_called_once()
        client.collection.assert_called_once_with("brussels_places")
        client.collection.return_value.document.assert_any_call("p0")

        _, doc = batches[0].set.call_args_list[0].args
        assert doc["name"] == "Parc Josaphat"
        assert doc["type"] == "park"
        assert "updatedAt" in doc
        assert batches[0].set.call_args_list[0].kwargs == {"merge": True}

    @pytest.mark.asyncio
    async def test_failed_commit_counts_as_skipped(self):
        """Test that a batch failing every retry is reported, not raised."""
        failing = Mock()
        failing.commit.side_effect = RuntimeError("deadline exceeded")
        succeeding = Mock()
        service = FirestoreService(
            client=make_client([failing, succeeding]),
            batch_size=1,
            commit_retries=2,
            retry_delay=0,
        )

        result = await service.batch_upsert(
            [make_place("a"), make_place("b")], DataType.DOG_PLACES
        )

        assert failing.commit.call_count == 2
        assert result.records_persisted == 1
        assert result.records_skipped == 1
        assert result.errors == ["Batch 1 failed: deadline exceeded"]

    @pytest.mark.asyncio
    async def test_empty_upsert_does_not_touch_firestore(self):
        """Test the no-op path."""
        client = Mock()
        result = await FirestoreService(client=client).batch_upsert([], DataType.ADDRESSES)

        assert result.records_persisted == 0
        client.collection.assert_not_called()

    @pytest.mark.asyncio
    async def test_address_documents(self):
        """Test the address document body."""
        batch = Mock()
        service = FirestoreService(client=make_client([batch]))

        await service.batch_upsert([make_address()], DataType.ADDRESSES)

        _, doc = batch.set.call_args.args
        assert doc["street"] == "Grand Place"
        assert doc["postalCode"] == "1000"
        assert doc["location"] == {"latitude": 50.8466, "longitude": 4.3516}
        assert "grand place" in doc["searchTerms"]
        assert doc["sourceId"] == "addr-1"

    def test_stream_collection(self):
        """Test reading documents back."""
        snapshot = Mock(id="doc1")
        snapshot.to_dict.return_value = {"name": "Parc"}
        client = Mock()
        client.collection.return_value.stream.return_value = [snapshot]

        documents = list(FirestoreService(client=client).stream_collection(DataType.DOG_PLACES))

        assert documents == [("doc1", {"name": "Parc"})]

    def test_stream_collection_failure(self):
        """Test that read failures become PersistenceError."""
        client = Mock()
        client.collection.return_value.stream.side_effect = RuntimeError("unavailable")

        with pytest.raises(PersistenceError, match="unavailable"):
            list(FirestoreService(client=client).stream_collection(DataType.ADDRESSES))

    def test_missing_credentials(self):
        """Test that the lazy client fails clearly without credentials."""
        with patch("shared.services.firestore_service.firebase_admin._apps", {}), patch.dict(
            "shared.services.firestore_service.firestore_configs", {"project_id": None}
        ):
            with pytest.raises(PersistenceError, match="project_id"):
                FirestoreService().client


class TestRedisVersionStore:
    """Test the Redis-backed version store."""

    @pytest.fixture
    def version(self, clock):
        return DataVersionService(clock=clock).create_version(
            DataType.ADDRESSES, DataSourceProvider.OSM, [make_address()]
        )

    def test_save_writes_json_field(self, version):
        """Test that versions are stored as hash fields."""
        client = Mock()
        store = RedisVersionStore(redis_client=client, key="versions")

        assert store.save(version) is True

        key, field, raw = client.hset.call_args.args
        assert (key, field) == ("versions", version.id)
        assert json.loads(raw)["source"] == "OSM"

    def test_load_all_round_trips(self, version):
        """Test that stored versions decode back to equal objects."""
        client = Mock()
        client.hgetall.return_value = {version.id: json.dumps(version, cls=DataEncoder)}

        loaded = RedisVersionStore(redis_client=client).load_all()

        assert loaded == [version]
        assert loaded[0].timestamp == NOW

    def test_load_all_rejects_corrupt_data(self):
        """Test that undecodable entries raise RedisError."""
        client = Mock()
        client.hgetall.return_value = {"v1": "{not json"}

        with pytest.raises(RedisError):
            RedisVersionStore(redis_client=client).load_all()

    def test_delete(self):
        """Test removing versions."""
        client = Mock()
        store = RedisVersionStore(redis_client=client, key="versions")

        assert store.delete(["a", "b"]) is True
        client.hdel.assert_called_once_with("versions", "a", "b")
        assert store.delete([]) is False

    def test_disconnected_store_is_a_no_op(self, version):
        """Test that an unreachable Redis disables the store."""
        client = Mock()
        client.ping.side_effect = ConnectionError("refused")
        store = RedisVersionStore(redis_client=client)

        assert store.is_connected() is False
        assert store.save(version) is False
        assert store.load_all() == []
        client.hset.assert_not_called()

    def test_version_from_dict(self):
        """Test decoding a stored version without metadata."""
        version = version_from_dict(
            {
                "id": "addresses_OSM_1_abc",
                "timestamp": NOW.isoformat(),
                "hash": "deadbeef",
                "source": "OSM",
                "type": "addresses",
                "record_count": 4,
            }
        )
        assert version.type == DataType.ADDRESSES
        assert version.record_count == 4
        assert version.metadata.errors == []
