#!/usr/bin/env python3
"""
Connection and database handle.

    database = await connect(Config.from_env())
    Model.use(database.executor)

    async with database.transaction():
        await order.save()
        await invoice.save()
"""

from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

from motor.motor_asyncio import AsyncIOMotorClient
from pymongo.errors import PyMongoError

from ..config import DEFAULT_PER_PAGE, Config
from ..exceptions import ConnectionError
from ..log_manager import get_logger
from .executor import MotorQueryExecutor
from .session import current_session, reset_session, set_session

__all__ = ['Database', 'connect', 'current_session']


class Database:
    """A connected Motor database plus its query executor."""

    def __init__(self, client, name: str, per_page: int = DEFAULT_PER_PAGE):
        self.client = client
        self.name = name
        self.database = client[name]
        self.executor = MotorQueryExecutor(self.database, per_page=per_page)
        self.logger = get_logger('Database')

    def collection(self, name: str):
        """Get the raw Motor collection."""
        return self.database[name]

    @asynccontextmanager
    async def transaction(self):
        """
        Run the enclosed block in a transaction.

        Commits when the block exits normally, aborts when it raises. Nested
        calls reuse the outer transaction.
        """
        if current_session() is not None:
            yield current_session()
            return

        async with await self.client.start_session() as session:
            async with session.start_transaction():
                token = set_session(session)
                try:
                    yield session
                except Exception:
                    self.logger.warning("Transaction aborted", exc_info=True)
                    raise
                finally:
                    reset_session(token)

    async def list_collection_names(self) -> List[str]:
        return await self.database.list_collection_names()

    async def drop(self):
        """Drop the whole database."""
        await self.client.drop_database(self.name)

    def close(self):
        self.client.close()


async def connect(config: Optional[Dict[str, Any]] = None, client=None) -> Database:
    """
    Connect to MongoDB and verify the server answers.

    Args:
        config: Dict from Config.from_env()/from_yaml()/for_local()
        client: Pre-built Motor-compatible client (skips client creation)

    Returns:
        Connected Database

    Raises:
        ConnectionError: If the server cannot be reached
    """
    config = config or Config.from_env()
    logger = get_logger('Database')

    if client is None:
        options = {}
        if config.get('app_name'):
            options['appname'] = config['app_name']
        try:
            client = AsyncIOMotorClient(config['uri'], **options)
            await client.admin.command('ping')
        except PyMongoError as e:
            logger.error(f"Failed to connect to {config['uri']}: {e}")
            raise ConnectionError(f"Failed to connect to MongoDB: {e}") from e

    logger.info(f"Connected to database {config['database']}")
    return Database(client, config['database'], per_page=config.get('per_page', DEFAULT_PER_PAGE))
