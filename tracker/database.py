"""
Storage backends for tracked sources, discovered apps and check sessions.

One abstract interface with an in-memory implementation and an async
MongoDB implementation, selected from configuration at startup.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional, Tuple

import structlog
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pydantic import ValidationError as PydanticValidationError
from pymongo import DESCENDING
from pymongo.errors import ConnectionFailure, DuplicateKeyError, PyMongoError

from .exceptions import DuplicateSourceError, PersistenceError, SourceNotFoundError
from .models import AppItem, CheckSession, IntervalUnit, SessionStatus, Source

logger = structlog.get_logger(__name__)


class SourceStore(ABC):
    """
    Persistence contract for the monitor.

    Implementations must keep source URLs unique and (source_id, app_id)
    pairs unique, and must cascade source deletion to apps and sessions.
    """

    async def connect(self) -> None:
        """Open backend resources."""

    async def disconnect(self) -> None:
        """Release backend resources."""

    # Sources
    @abstractmethod
    async def create_source(self, source: Source) -> Source:
        """Insert a source. Raises DuplicateSourceError on a tracked URL."""

    @abstractmethod
    async def get_source(self, source_id: str) -> Optional[Source]:
        ...

    @abstractmethod
    async def list_sources(self) -> List[Source]:
        """All sources, newest created first."""

    @abstractmethod
    async def delete_source(self, source_id: str) -> bool:
        """Delete a source with its apps and sessions. False if it did not exist."""

    @abstractmethod
    async def update_interval(self, source_id: str, value: float, unit: IntervalUnit) -> Source:
        ...

    @abstractmethod
    async def update_last_checked(self, source_id: str, timestamp: datetime) -> None:
        ...

    # Apps
    @abstractmethod
    async def insert_app_if_absent(self, item: AppItem) -> bool:
        """Insert a discovered app. False when (source_id, app_id) already exists."""

    @abstractmethod
    async def get_apps(self, source_id: str) -> List[AppItem]:
        """Apps of one source, most recently discovered first."""

    @abstractmethod
    async def count_apps(self, source_id: Optional[str] = None) -> int:
        ...

    # Sessions
    @abstractmethod
    async def create_session(self, source_id: str, started_at: datetime) -> CheckSession:
        ...

    @abstractmethod
    async def complete_session(
        self,
        session_id: str,
        apps_found: int,
        new_apps_found: int,
        completed_at: datetime
    ) -> None:
        ...

    @abstractmethod
    async def fail_session(self, session_id: str, error: str, completed_at: datetime) -> None:
        ...

    @abstractmethod
    async def list_sessions(
        self,
        source_id: Optional[str] = None,
        limit: int = 20,
        offset: int = 0
    ) -> List[CheckSession]:
        """Sessions, most recently started first."""

    @abstractmethod
    async def count_sessions(self, source_id: Optional[str] = None) -> int:
        ...

    @abstractmethod
    async def count_new_apps_since(self, since: datetime) -> int:
        """Sum of new apps reported by sessions started after ``since``."""


class InMemorySourceStore(SourceStore):
    """Process-local store. Contents are lost when the process exits."""

    def __init__(self):
        self._sources: Dict[str, Source] = {}
        self._apps: Dict[Tuple[str, str], AppItem] = {}
        self._sessions: Dict[str, CheckSession] = {}

    async def create_source(self, source: Source) -> Source:
        if any(existing.url == source.url for existing in self._sources.values()):
            raise DuplicateSourceError(source.url)
        self._sources[source.source_id] = source.model_copy()
        logger.debug("Source created", source_id=source.source_id, url=source.url)
        return source.model_copy()

    async def get_source(self, source_id: str) -> Optional[Source]:
        source = self._sources.get(source_id)
        return source.model_copy() if source else None

    async def list_sources(self) -> List[Source]:
        sources = sorted(self._sources.values(), key=lambda s: s.created_at, reverse=True)
        return [source.model_copy() for source in sources]

    async def delete_source(self, source_id: str) -> bool:
        if self._sources.pop(source_id, None) is None:
            return False
        self._apps = {key: app for key, app in self._apps.items() if key[0] != source_id}
        self._sessions = {
            key: session for key, session in self._sessions.items()
            if session.source_id != source_id
        }
        return True

    async def update_interval(self, source_id: str, value: float, unit: IntervalUnit) -> Source:
        source = self._sources.get(source_id)
        if source is None:
            raise SourceNotFoundError(source_id)
        source.check_interval_value = value
        source.check_interval_unit = unit
        return source.model_copy()

    async def update_last_checked(self, source_id: str, timestamp: datetime) -> None:
        source = self._sources.get(source_id)
        if source is None:
            raise SourceNotFoundError(source_id)
        source.last_checked = timestamp

    async def insert_app_if_absent(self, item: AppItem) -> bool:
        if item.source_id not in self._sources:
            raise SourceNotFoundError(item.source_id)
        key = (item.source_id, item.app_id)
        if key in self._apps:
            return False
        self._apps[key] = item.model_copy()
        return True

    async def get_apps(self, source_id: str) -> List[AppItem]:
        apps = [app for key, app in self._apps.items() if key[0] == source_id]
        apps.sort(key=lambda a: a.discovered_at, reverse=True)
        return [app.model_copy() for app in apps]

    async def count_apps(self, source_id: Optional[str] = None) -> int:
        if source_id is None:
            return len(self._apps)
        return sum(1 for key in self._apps if key[0] == source_id)

    async def create_session(self, source_id: str, started_at: datetime) -> CheckSession:
        if source_id not in self._sources:
            raise SourceNotFoundError(source_id)
        session = CheckSession(source_id=source_id, started_at=started_at)
        self._sessions[session.session_id] = session
        return session.model_copy()

    async def complete_session(
        self,
        session_id: str,
        apps_found: int,
        new_apps_found: int,
        completed_at: datetime
    ) -> None:
        session = self._sessions.get(session_id)
        if session is None:
            raise PersistenceError(f"Session not found: {session_id}")
        session.apps_found = apps_found
        session.new_apps_found = new_apps_found
        session.completed_at = completed_at
        session.status = SessionStatus.COMPLETED

    async def fail_session(self, session_id: str, error: str, completed_at: datetime) -> None:
        session = self._sessions.get(session_id)
        if session is None:
            raise PersistenceError(f"Session not found: {session_id}")
        session.error = error
        session.completed_at = completed_at
        session.status = SessionStatus.FAILED

    async def list_sessions(
        self,
        source_id: Optional[str] = None,
        limit: int = 20,
        offset: int = 0
    ) -> List[CheckSession]:
        sessions = [
            s for s in self._sessions.values()
            if source_id is None or s.source_id == source_id
        ]
        sessions.sort(key=lambda s: s.started_at, reverse=True)
        return [s.model_copy() for s in sessions[offset:offset + limit]]

    async def count_sessions(self, source_id: Optional[str] = None) -> int:
        return sum(
            1 for s in self._sessions.values()
            if source_id is None or s.source_id == source_id
        )

    async def count_new_apps_since(self, since: datetime) -> int:
        return sum(s.new_apps_found for s in self._sessions.values() if s.started_at > since)


class MongoSourceStore(SourceStore):
    """
    Async MongoDB store.
    Uniqueness invariants are enforced by unique indexes.
    """

    def __init__(self, connection_url: str, database_name: str):
        """
        Initialize MongoDB store.

        Args:
            connection_url: MongoDB connection URL
            database_name: Name of the database
        """
        self.connection_url = connection_url
        self.database_name = database_name
        self.client: Optional[AsyncIOMotorClient] = None
        self.database: Optional[AsyncIOMotorDatabase] = None

    async def connect(self) -> None:
        """Establish connection to MongoDB."""
        try:
            self.client = AsyncIOMotorClient(self.connection_url, tz_aware=True)
            self.database = self.client[self.database_name]

            await self.client.admin.command('ping')
            logger.info("Successfully connected to MongoDB", database=self.database_name)

            await self._create_indexes()

        except ConnectionFailure as e:
            logger.error("Failed to connect to MongoDB", error=str(e))
            raise PersistenceError(f"Failed to connect to MongoDB: {e}") from e

    async def disconnect(self) -> None:
        """Close MongoDB connection."""
        if self.client:
            self.client.close()
            logger.info("Disconnected from MongoDB")

    async def _create_indexes(self) -> None:
        """Create unique indexes backing the uniqueness invariants, plus query indexes."""
        try:
            await self.database.sources.create_index("source_id", unique=True)
            await self.database.sources.create_index("url", unique=True)
            await self.database.sources.create_index("created_at")

            await self.database.apps.create_index([("source_id", 1), ("app_id", 1)], unique=True)
            await self.database.apps.create_index("discovered_at")

            await self.database.check_sessions.create_index("session_id", unique=True)
            await self.database.check_sessions.create_index("source_id")
            await self.database.check_sessions.create_index("started_at")

            logger.info("Successfully created MongoDB indexes")

        except PyMongoError as e:
            logger.error("Failed to create indexes", error=str(e))
            raise PersistenceError(f"Failed to create indexes: {e}") from e

    @staticmethod
    def _to_document(model) -> dict:
        """Dump a model to a BSON-friendly dict with enum members stored by value."""
        doc = model.model_dump()
        return {key: value.value if isinstance(value, Enum) else value for key, value in doc.items()}

    @staticmethod
    def _strip_id(doc: dict) -> dict:
        doc.pop('_id', None)
        return doc

    async def _require_source(self, source_id: str) -> None:
        if await self.database.sources.count_documents({"source_id": source_id}, limit=1) == 0:
            raise SourceNotFoundError(source_id)

    async def create_source(self, source: Source) -> Source:
        try:
            await self.database.sources.insert_one(self._to_document(source))
            logger.debug("Source created", source_id=source.source_id, url=source.url)
            return source
        except DuplicateKeyError as e:
            raise DuplicateSourceError(source.url) from e
        except PyMongoError as e:
            logger.error("Failed to create source", url=source.url, error=str(e))
            raise PersistenceError(f"Failed to create source: {e}") from e

    async def get_source(self, source_id: str) -> Optional[Source]:
        try:
            doc = await self.database.sources.find_one({"source_id": source_id})
        except PyMongoError as e:
            raise PersistenceError(f"Failed to load source {source_id}: {e}") from e
        return Source(**self._strip_id(doc)) if doc else None

    async def list_sources(self) -> List[Source]:
        """All sources, newest first. Documents that no longer validate are logged and skipped."""
        try:
            cursor = self.database.sources.find({}).sort("created_at", DESCENDING)
            docs = [self._strip_id(doc) async for doc in cursor]
        except PyMongoError as e:
            logger.error("Failed to list sources", error=str(e))
            raise PersistenceError(f"Failed to list sources: {e}") from e

        sources = []
        for doc in docs:
            try:
                sources.append(Source(**doc))
            except PydanticValidationError as e:
                logger.warning(
                    "Skipping invalid source document",
                    source_id=doc.get("source_id"),
                    error=str(e)
                )
        return sources

    async def delete_source(self, source_id: str) -> bool:
        try:
            result = await self.database.sources.delete_one({"source_id": source_id})
            if result.deleted_count == 0:
                return False
            apps = await self.database.apps.delete_many({"source_id": source_id})
            sessions = await self.database.check_sessions.delete_many({"source_id": source_id})
            logger.info(
                "Source deleted",
                source_id=source_id,
                apps_deleted=apps.deleted_count,
                sessions_deleted=sessions.deleted_count
            )
            return True
        except PyMongoError as e:
            logger.error("Failed to delete source", source_id=source_id, error=str(e))
            raise PersistenceError(f"Failed to delete source {source_id}: {e}") from e

    async def update_interval(self, source_id: str, value: float, unit: IntervalUnit) -> Source:
        try:
            result = await self.database.sources.update_one(
                {"source_id": source_id},
                {"$set": {"check_interval_value": value, "check_interval_unit": unit.value}}
            )
        except PyMongoError as e:
            raise PersistenceError(f"Failed to update interval for {source_id}: {e}") from e
        if result.matched_count == 0:
            raise SourceNotFoundError(source_id)
        return await self.get_source(source_id)

    async def update_last_checked(self, source_id: str, timestamp: datetime) -> None:
        try:
            result = await self.database.sources.update_one(
                {"source_id": source_id},
                {"$set": {"last_checked": timestamp}}
            )
        except PyMongoError as e:
            raise PersistenceError(f"Failed to update last_checked for {source_id}: {e}") from e
        if result.matched_count == 0:
            raise SourceNotFoundError(source_id)

    async def insert_app_if_absent(self, item: AppItem) -> bool:
        try:
            await self._require_source(item.source_id)
            result = await self.database.apps.update_one(
                {"source_id": item.source_id, "app_id": item.app_id},
                {"$setOnInsert": self._to_document(item)},
                upsert=True
            )
            return result.upserted_id is not None
        except DuplicateKeyError:
            # Concurrent upsert of the same pair
            return False
        except PyMongoError as e:
            raise PersistenceError(f"Failed to insert app {item.app_id}: {e}") from e

    async def get_apps(self, source_id: str) -> List[AppItem]:
        try:
            cursor = self.database.apps.find({"source_id": source_id}).sort("discovered_at", DESCENDING)
            return [AppItem(**self._strip_id(doc)) async for doc in cursor]
        except PyMongoError as e:
            raise PersistenceError(f"Failed to load apps for {source_id}: {e}") from e

    async def count_apps(self, source_id: Optional[str] = None) -> int:
        query = {} if source_id is None else {"source_id": source_id}
        try:
            return await self.database.apps.count_documents(query)
        except PyMongoError as e:
            raise PersistenceError(f"Failed to count apps: {e}") from e

    async def create_session(self, source_id: str, started_at: datetime) -> CheckSession:
        session = CheckSession(source_id=source_id, started_at=started_at)
        try:
            await self._require_source(source_id)
            await self.database.check_sessions.insert_one(self._to_document(session))
            return session
        except PyMongoError as e:
            raise PersistenceError(f"Failed to create session for {source_id}: {e}") from e

    async def _update_session(self, session_id: str, fields: dict) -> None:
        try:
            result = await self.database.check_sessions.update_one(
                {"session_id": session_id},
                {"$set": fields}
            )
        except PyMongoError as e:
            raise PersistenceError(f"Failed to update session {session_id}: {e}") from e
        if result.matched_count == 0:
            raise PersistenceError(f"Session not found: {session_id}")

    async def complete_session(
        self,
        session_id: str,
        apps_found: int,
        new_apps_found: int,
        completed_at: datetime
    ) -> None:
        await self._update_session(session_id, {
            "apps_found": apps_found,
            "new_apps_found": new_apps_found,
            "completed_at": completed_at,
            "status": SessionStatus.COMPLETED.value
        })

    async def fail_session(self, session_id: str, error: str, completed_at: datetime) -> None:
        await self._update_session(session_id, {
            "error": error,
            "completed_at": completed_at,
            "status": SessionStatus.FAILED.value
        })

    async def list_sessions(
        self,
        source_id: Optional[str] = None,
        limit: int = 20,
        offset: int = 0
    ) -> List[CheckSession]:
        query = {} if source_id is None else {"source_id": source_id}
        try:
            cursor = (
                self.database.check_sessions.find(query)
                .sort("started_at", DESCENDING)
                .skip(offset)
                .limit(limit)
            )
            return [CheckSession(**self._strip_id(doc)) async for doc in cursor]
        except PyMongoError as e:
            raise PersistenceError(f"Failed to list sessions: {e}") from e

    async def count_sessions(self, source_id: Optional[str] = None) -> int:
        query = {} if source_id is None else {"source_id": source_id}
        try:
            return await self.database.check_sessions.count_documents(query)
        except PyMongoError as e:
            raise PersistenceError(f"Failed to count sessions: {e}") from e

    async def count_new_apps_since(self, since: datetime) -> int:
        pipeline = [
            {"$match": {"started_at": {"$gt": since}}},
            {"$group": {"_id": None, "total": {"$sum": "$new_apps_found"}}}
        ]
        try:
            cursor = self.database.check_sessions.aggregate(pipeline)
            result = await cursor.to_list(length=1)
        except PyMongoError as e:
            raise PersistenceError(f"Failed to aggregate new apps: {e}") from e
        return result[0]["total"] if result else 0


def create_source_store(config) -> SourceStore:
    """Build the storage backend named by ``config.storage_backend``."""
    if config.storage_backend == "mongodb":
        return MongoSourceStore(config.mongodb_url, config.mongodb_database)
    return InMemorySourceStore()
