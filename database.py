"""
Database wiring.

`db` is the pymongo database when DATABASE_URL and DATABASE_NAME are set,
otherwise None and the service runs on an in-memory store.
"""
import logging
from typing import Optional, Union

from pymongo import MongoClient

import config
from store import CODEC_OPTIONS, MemoryStore, MongoStore

logger = logging.getLogger(__name__)

db = None
if config.DATABASE_URL and config.DATABASE_NAME:
    client = MongoClient(config.DATABASE_URL, tz_aware=True)
    db = client.get_database(config.DATABASE_NAME, codec_options=CODEC_OPTIONS)

Store = Union[MemoryStore, MongoStore]

_store: Optional[Store] = None


def get_store() -> Store:
    global _store
    if _store is None:
        if db is not None:
            logger.info("Using MongoDB database %s", config.DATABASE_NAME)
            _store = MongoStore(db)
            _store.ensure_indexes()
        else:
            logger.warning("DATABASE_URL/DATABASE_NAME not set, using in-memory store")
            _store = MemoryStore()
    return _store
