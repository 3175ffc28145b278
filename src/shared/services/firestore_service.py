"""
Firestore persistence for addresses and dog places.
"""

import asyncio
import time
from typing import Any, Dict, Iterator, List, Optional, Tuple

import firebase_admin
from firebase_admin import credentials, firestore

from shared.schemas.dto import AddressData
from shared.schemas.pipeline import PersistResult, Record
from shared.services.base import PersistenceAdapter
from shared.utils.configs import firestore_configs
from shared.utils.errors import PersistenceError
from shared.utils.helpers import address_document_id
from shared.utils.logger import logger
from shared.utils.types import DataType, ErrorType

# Hard limit on writes per Firestore batch
MAX_BATCH_SIZE = 500


def initialize_firebase() -> None:
    """
    Initialize the default Firebase app from service account env vars, once.

    Raises:
        PersistenceError: If the project id, client email or private key is missing
    """
    if firebase_admin._apps:
        return

    required = ("project_id", "private_key", "client_email")
    missing = [key for key in required if not firestore_configs.get(key)]
    if missing:
        raise PersistenceError(
            message=f"Missing Firebase credentials: {', '.join(missing)}",
            error_type=ErrorType.CONFIG_ERROR,
            status_code=500,
        )

    cred = credentials.Certificate(
        {
            "type": "service_account",
            "project_id": firestore_configs["project_id"],
            "private_key_id": firestore_configs["private_key_id"],
            "private_key": firestore_configs["private_key"],
            "client_email": firestore_configs["client_email"],
            "client_id": firestore_configs["client_id"],
            "auth_uri": "https://accounts.google.com/o/oauth2/auth",
            "token_uri": "https://oauth2.googleapis.com/token",
            "client_x509_cert_url": firestore_configs["client_x509_cert_url"],
        }
    )
    firebase_admin.initialize_app(cred)
    logger.info(f"Initialized Firebase app for project {firestore_configs['project_id']}")


class FirestoreService(PersistenceAdapter):
    """
    Upserts records into the `brussels_addresses` and `brussels_places`
    collections with merge writes.
    """

    def __init__(
        self,
        client: Optional[Any] = None,
        batch_size: int = firestore_configs["batch_size"],
        commit_retries: int = firestore_configs["commit_retries"],
        retry_delay: float = 1.0,
    ):
        self._client = client
        self.batch_size = max(1, min(batch_size, MAX_BATCH_SIZE))
        self.commit_retries = max(1, commit_retries)
        self.retry_delay = retry_delay

    @property
    def client(self):
        if self._client is None:
            initialize_firebase()
            self._client = firestore.client()
        return self._client

    @staticmethod
    def collection_name(data_type: DataType) -> str:
        if data_type == DataType.ADDRESSES:
            return firestore_configs["addresses_collection"]
        return firestore_configs["places_collection"]

    @staticmethod
    def document_id(record: Record) -> Optional[str]:
        """
        Addresses are keyed by commune, street and number so that the same
        address from two providers lands on one document. Places use their id.
        """
        if isinstance(record, AddressData) and record.street_name and record.street_number:
            return address_document_id(
                record.municipality, record.street_name, record.street_number
            )
        return record.id or None

    async def _commit_with_retry(self, batch, label: str) -> Optional[str]:
        """
        Commit a write batch, retrying with exponential backoff.

        Returns:
            None on success, otherwise the last error message
        """
        last_error = None
        for attempt in range(self.commit_retries):
            try:
                await asyncio.to_thread(batch.commit)
                return None
            except Exception as e:
                last_error = str(e)
                logger.warning(
                    f"Commit failed [{label}] attempt {attempt + 1}/{self.commit_retries}: {e}"
                )
                if attempt < self.commit_retries - 1:
                    await asyncio.sleep(self.retry_delay * (2**attempt))
        return last_error

    async def batch_upsert(self, data: List[Record], data_type: DataType) -> PersistResult:
        """
        Write records in chunks of at most `batch_size`.

        Args:
            data: Records to upsert
            data_type: Selects the target collection

        Returns:
            PersistResult; a chunk whose commit keeps failing counts as skipped
        """
        result = PersistResult()
        if not data:
            return result

        start_time = time.time()
        collection = self.client.collection(self.collection_name(data_type))

        for i in range(0, len(data), self.batch_size):
            chunk = data[i : i + self.batch_size]
            batch = self.client.batch()
            written = 0
            for record in chunk:
                doc_id = self.document_id(record)
                if not doc_id:
                    result.records_skipped += 1
                    continue
                doc: Dict[str, Any] = {
                    **record.to_dict(),
                    "updatedAt": firestore.SERVER_TIMESTAMP,
                }
                batch.set(collection.document(doc_id), doc, merge=True)
                written += 1

            if not written:
                continue

            error = await self._commit_with_retry(
                batch, f"{data_type.value}:{i // self.batch_size + 1}"
            )
            if error:
                result.records_skipped += written
                result.errors.append(f"Batch {i // self.batch_size + 1} failed: {error}")
            else:
                result.records_persisted += written
                logger.info(
                    f"Committed batch {i // self.batch_size + 1} ({written} {data_type.value})"
                )

        duration = time.time() - start_time
        logger.info(
            f"Persisted {result.records_persisted} {data_type.value} records, "
            f"skipped {result.records_skipped} in {duration:.2f}s"
        )
        return result

    def stream_collection(self, data_type: DataType) -> Iterator[Tuple[str, Dict[str, Any]]]:
        """
        Yield (document id, document dict) for every document of a collection.

        Raises:
            PersistenceError: If the collection cannot be read
        """
        name = self.collection_name(data_type)
        try:
            for snapshot in self.client.collection(name).stream():
                yield snapshot.id, snapshot.to_dict() or {}
        except PersistenceError:
            raise
        except Exception as e:
            logger.error(f"Failed to read collection {name}: {e}")
            raise PersistenceError(message=f"Failed to read collection {name}: {e}")
