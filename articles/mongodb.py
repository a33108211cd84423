"""
MongoDB connection for the articles collection.
All database access goes through the connection owned by the articles app.
"""
import logging
import threading
from typing import Optional

from django.apps import apps
from django.conf import settings
from pymongo import MongoClient
from pymongo.collection import Collection
from pymongo.errors import PyMongoError
from pymongo.server_api import ServerApi

from .exceptions import DatabaseConnectionError

logger = logging.getLogger(__name__)


class MongoConnection:
    """Lazily connected MongoDB client plus the articles collection handle.

    The first caller of ``ensure_connected`` opens the client; concurrent
    callers wait on the same lock and reuse the result. A failed attempt
    leaves the connection empty so the next request tries again.
    """

    def __init__(
        self,
        uri: Optional[str] = None,
        db_name: Optional[str] = None,
        collection_name: Optional[str] = None,
    ):
        self._uri = uri
        self._db_name = db_name
        self._collection_name = collection_name
        self._client: Optional[MongoClient] = None
        self._collection: Optional[Collection] = None
        self._lock = threading.Lock()

    @property
    def uri(self) -> str:
        return self._uri if self._uri is not None else settings.MONGODB_URI

    @property
    def db_name(self) -> str:
        return self._db_name or settings.MONGODB_DB_NAME

    @property
    def collection_name(self) -> str:
        return self._collection_name or settings.ARTICLES_COLLECTION

    @property
    def is_connected(self) -> bool:
        return self._collection is not None

    def ensure_connected(self) -> Collection:
        """Return the articles collection, connecting first if needed."""
        collection = self._collection
        if collection is not None:
            return collection

        with self._lock:
            if self._collection is None:
                self._connect()
            return self._collection

    def _connect(self) -> None:
        if not self.uri:
            logger.error("MongoDB connection failed: DB_URI is not configured")
            raise DatabaseConnectionError()

        client = None
        try:
            client = MongoClient(
                self.uri,
                server_api=ServerApi('1', strict=True, deprecation_errors=True),
                serverSelectionTimeoutMS=settings.MONGODB_SERVER_SELECTION_TIMEOUT_MS,
                maxPoolSize=settings.MONGODB_MAX_POOL_SIZE,
            )
            client.admin.command('ping')
        except PyMongoError as e:
            logger.error("MongoDB connection failed: %s", e)
            if client is not None:
                client.close()
            raise DatabaseConnectionError() from e

        self._client = client
        self._collection = client[self.db_name][self.collection_name]
        logger.info("MongoDB connected to %s.%s", self.db_name, self.collection_name)

    def close(self) -> None:
        """Close the client. The next request reconnects."""
        with self._lock:
            if self._client is not None:
                self._client.close()
            self._client = None
            self._collection = None


def get_connection() -> MongoConnection:
    """Return the process-wide connection owned by the articles app."""
    return apps.get_app_config('articles').connection
