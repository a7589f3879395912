"""
storage/provider.py
-------------------
Builds the StorageProvider selected by STORAGE_BACKEND. Called once by the
application factory; tests construct a MemoryStorageProvider directly.
"""

from propertypro.core.config import settings
from propertypro.core.logging import get_logger
from propertypro.storage.base import StorageProvider
from propertypro.storage.memory import MemoryStorageProvider

logger = get_logger(__name__)


def build_storage_provider() -> StorageProvider:
    if settings.STORAGE_BACKEND == "memory":
        logger.warning("Using in-memory storage; data is lost on restart")
        return MemoryStorageProvider()

    # Imported here so the memory backend never creates a DB engine
    from propertypro.db.session import build_engine, build_session_factory
    from propertypro.storage.sql import SqlStorageProvider

    engine = build_engine()
    return SqlStorageProvider(build_session_factory(engine), engine)
