"""Connection setup and backend selection."""
import logging

from pymongo import MongoClient
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool

from config import Settings, StorageBackend
from memory_storage import MemoryStorage
from mongo_storage import MongoStorage
from sql_storage import SQLStorage
from storage import EntityStore

logger = logging.getLogger(__name__)

IN_MEMORY_SQLITE = ("sqlite://", "sqlite:///:memory:")


def create_sql_engine(url: str) -> Engine:
    if url in IN_MEMORY_SQLITE:
        # One shared connection, otherwise every checkout sees an empty database
        return create_engine(url, connect_args={"check_same_thread": False}, poolclass=StaticPool)
    if url.startswith("sqlite"):
        return create_engine(url, connect_args={"check_same_thread": False})
    return create_engine(url, pool_pre_ping=True)


def get_mongo_database(uri: str, name: str):
    client = MongoClient(uri, tz_aware=True)
    return client[name]


def build_store(settings: Settings) -> EntityStore:
    """Construct the backend named by ``settings.storage_backend``.

    A missing connection string for the selected backend is a configuration
    error; there is no fallback to another backend.
    """
    backend = settings.storage_backend
    if backend == StorageBackend.RELATIONAL:
        if not settings.database_url:
            raise ValueError("STORAGE_BACKEND=relational requires DATABASE_URL")
        store = SQLStorage(create_sql_engine(settings.database_url))
    elif backend == StorageBackend.DOCUMENT:
        if not settings.mongodb_uri:
            raise ValueError("STORAGE_BACKEND=document requires MONGODB_URI")
        store = MongoStorage(get_mongo_database(settings.mongodb_uri, settings.mongodb_name))
    else:
        store = MemoryStorage(seed=False)
    logger.info("Using %s storage backend", store.backend_name)
    return store
