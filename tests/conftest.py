"""
Shared pytest fixtures for mongolayer tests.
Provides an in-memory Motor database and a recording executor.
"""

import os
import tempfile

# Keep log files out of the home directory; must happen before mongolayer
# creates its first logger.
os.environ.setdefault('MONGOLAYER_LOG_DIR', tempfile.mkdtemp(prefix='mongolayer_logs_'))

import pytest
import pytest_asyncio
from typing import Any, Dict, List, Optional

from mongomock_motor import AsyncMongoMockClient

from mongolayer.db.executor import MotorQueryExecutor, QueryExecutor
from mongolayer.model import Model


class RecordingExecutor(QueryExecutor):
    """
    QueryExecutor that records every call instead of touching a database.

    Queue results for aggregate() in `aggregate_results`; each call pops one.
    """

    def __init__(self, aggregate_results: Optional[List[List[Dict[str, Any]]]] = None):
        self.calls: List[tuple] = []
        self.aggregate_results = list(aggregate_results or [])
        self.modified_count = 0
        self.deleted_count = 0

    async def aggregate(self, collection, pipeline):
        self.calls.append(('aggregate', collection, pipeline))
        return self.aggregate_results.pop(0) if self.aggregate_results else []

    async def explain(self, collection, pipeline):
        self.calls.append(('explain', collection, pipeline))
        return {'stages': pipeline}

    async def insert_one(self, collection, document):
        self.calls.append(('insert_one', collection, document))
        return None

    async def insert_many(self, collection, documents):
        self.calls.append(('insert_many', collection, documents))
        return []

    async def replace_one(self, collection, filter, document, upsert=False):
        self.calls.append(('replace_one', collection, filter, document))
        return 1

    async def update_one(self, collection, filter, update, upsert=False):
        self.calls.append(('update_one', collection, filter, update))
        return 1

    async def update_many(self, collection, filter, update):
        self.calls.append(('update_many', collection, filter, update))
        return self.modified_count

    async def find_one_and_update(self, collection, filter, update, upsert=False):
        self.calls.append(('find_one_and_update', collection, filter, update))
        return None

    async def delete_one(self, collection, filter):
        self.calls.append(('delete_one', collection, filter))
        return 1

    async def delete_many(self, collection, filter):
        self.calls.append(('delete_many', collection, filter))
        return self.deleted_count

    async def find_one(self, collection, filter):
        self.calls.append(('find_one', collection, filter))
        return None

    async def find_many(self, collection, filter, sort=None, limit=None):
        self.calls.append(('find_many', collection, filter))
        return []

    async def count(self, collection, filter=None):
        self.calls.append(('count', collection, filter))
        return 0

    async def distinct(self, collection, key, filter=None):
        self.calls.append(('distinct', collection, key, filter))
        return []


@pytest.fixture
def recorder():
    """Provide a fresh RecordingExecutor."""
    return RecordingExecutor()


@pytest_asyncio.fixture
async def database():
    """Provide an empty in-memory Motor database."""
    client = AsyncMongoMockClient()
    yield client['mongolayer_test']


@pytest_asyncio.fixture
async def executor(database):
    """Provide a MotorQueryExecutor over the in-memory database."""
    return MotorQueryExecutor(database)


@pytest_asyncio.fixture
async def models(executor):
    """
    Bind every model to the in-memory executor for one test.

    Clears listeners of the base registry afterwards.
    """
    Model.use(executor)
    yield executor
    Model._executor = None
    Model.events().off()
