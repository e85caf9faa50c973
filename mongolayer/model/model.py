#!/usr/bin/env python3
"""
Model layer.

A Model wraps one document of a collection: dotted-path accessors, casts,
timestamps, auto-increment ids, lifecycle events, delete strategies and the
sync rules that keep embedded copies of it up to date elsewhere.

    class Order(Model):
        collection = "orders"
        casts = {"total": "float", "customer": Customer}

    Model.use(database.executor)
    order = await Order.create({"total": "19.90", "customer": 7})
"""

import copy
import inspect
import json
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Union

from bson import ObjectId

from ..db.executor import QueryExecutor
from ..db.master_mind import MasterMind
from ..exceptions import StorageError, ValidationError
from ..log_manager import get_logger
from ..utils.paths import MISSING, find_index, get_path, set_path, unset_path
from ..utils.time_utils import normalize_dates, parse_datetime, utc_now
from .events import ModelEvents
from .model_aggregate import ModelAggregate
from .sync import ModelSync

Document = Dict[str, Any]


class DeleteStrategy(str, Enum):
    HARD_DELETE = "hardDelete"
    SOFT_DELETE = "softDelete"
    MOVE_TO_TRASH = "trash"


def _deep_merge(base: Document, override: Document) -> Document:
    result = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(result.get(key), dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = copy.deepcopy(value)
    return result


def _identity(value: Any) -> Any:
    """Embedded documents are identified by their id, scalars by themselves."""
    if isinstance(value, dict) and value.get("id") is not None:
        return value["id"]
    return value


def _is_empty(value: Any) -> bool:
    return value is None or (isinstance(value, (str, list, dict)) and len(value) == 0)


def cast_value(value: Any, cast_type: str) -> Any:
    """
    Cast a scalar to one of the named cast types.

    Types: string, int/integer, float, number, bool/boolean, date, location,
    object, array, any/mixed. Unknown names leave the value unchanged.
    """
    empty = _is_empty(value)

    if cast_type == "string":
        return "" if empty else str(value).strip()
    if cast_type in ("int", "integer"):
        return 0 if empty else int(value)
    if cast_type == "float":
        return 0.0 if empty else float(value)
    if cast_type == "number":
        if empty:
            return 0
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return value
        number = float(value)
        return int(number) if number.is_integer() else number
    if cast_type in ("bool", "boolean"):
        if empty:
            return False
        if value in ("false", "0") or value == 0:
            return False
        return True if value == "true" else bool(value)
    if cast_type == "date":
        return parse_datetime(value)
    if cast_type == "location":
        if empty:
            return None
        return {"type": "Point", "coordinates": [float(value[0]), float(value[1])]}
    if cast_type == "object":
        if empty:
            return {}
        if isinstance(value, str):
            try:
                return json.loads(value)
            except ValueError:
                return {}
        return value
    if cast_type == "array":
        if empty:
            return []
        if isinstance(value, str):
            return json.loads(value)
        return value
    return value


class Model:
    """Base class of every model; also the base-level event bus."""

    collection: str = ""
    primary_id_column = "id"
    singular_name: Optional[str] = None
    per_page: Optional[int] = None

    initial_id = 1
    increment_id_by = 1
    delete_strategy = DeleteStrategy.MOVE_TO_TRASH

    casts: Dict[str, Any] = {}
    default_value: Dict[str, Any] = {}

    embedded: List[str] = []
    embed_all_except: List[str] = []
    embed_all_except_timestamps_and_user_columns = False

    created_at_column = "createdAt"
    updated_at_column = "updatedAt"
    deleted_at_column = "deletedAt"
    created_by_column = "createdBy"
    updated_by_column = "updatedBy"
    deleted_by_column = "deletedBy"

    sync_with: List[ModelSync] = []
    joinings: Dict[str, Any] = {}

    _executor: Optional[QueryExecutor] = None
    _events = ModelEvents()

    def __init_subclass__(cls, **kwargs):
        super().__init_subclass__(**kwargs)
        cls._events = ModelEvents(cls.collection or None)

    def __init__(self, data: Union[Document, 'Model', None] = None):
        if isinstance(data, Model):
            data = data.data
        data = copy.deepcopy(data or {})

        if isinstance(data.get("_id"), str) and ObjectId.is_valid(data["_id"]):
            data["_id"] = ObjectId(data["_id"])

        self.data: Document = data
        self.original_data: Document = copy.deepcopy(data)
        self.is_restored = False
        self.logger = get_logger('Model')

    # ------------------------------------------------------------------
    # Class-level wiring
    # ------------------------------------------------------------------

    @classmethod
    def use(cls, executor: QueryExecutor):
        """Set the executor of this model class (Model.use() sets the default for all)."""
        cls._executor = executor

    @classmethod
    def get_executor(cls) -> QueryExecutor:
        if cls._executor is None:
            raise StorageError(
                f"No query executor configured for {cls.__name__}; call Model.use(executor)"
            )
        return cls._executor

    @classmethod
    def events(cls) -> ModelEvents:
        return cls._events

    @classmethod
    async def trigger_event(cls, event: str, *args: Any):
        """Trigger event on the class registry, then on the base registry."""
        await cls._events.trigger(event, *args)
        if cls._events is not Model._events:
            await Model._events.trigger(event, *args)

    @classmethod
    def aggregate(cls) -> ModelAggregate:
        return ModelAggregate(cls)

    @classmethod
    def query_builder(cls) -> ModelAggregate:
        return ModelAggregate(cls)

    @classmethod
    def sync(cls, columns: Union[str, List[str]], embed_method: str = "embedded_data") -> ModelSync:
        """Rule embedding the source record into this model's documents."""
        return ModelSync(cls, columns, embed_method)

    @classmethod
    def sync_many(cls, columns: Union[str, List[str]], embed_method: str = "embedded_data") -> ModelSync:
        return ModelSync(cls, columns, embed_method).sync_many()

    @classmethod
    async def generate_next_id(cls) -> int:
        return await MasterMind(cls.get_executor()).generate_next_id(
            cls.collection, cls.increment_id_by, cls.initial_id
        )

    @classmethod
    async def get_last_id(cls) -> int:
        return await MasterMind(cls.get_executor()).get_last_id(cls.collection)

    # ------------------------------------------------------------------
    # Data access
    # ------------------------------------------------------------------

    @property
    def id(self) -> Any:
        return self.data.get("id")

    def get(self, column: str, default: Any = None) -> Any:
        return get_path(self.data, column, default)

    def original(self, column: str, default: Any = None) -> Any:
        return get_path(self.original_data, column, default)

    def set(self, column: str, value: Any) -> 'Model':
        set_path(self.data, column, value)
        return self

    def has(self, column: str) -> bool:
        return get_path(self.data, column, MISSING) is not MISSING

    def unset(self, *columns: str) -> 'Model':
        for column in columns:
            unset_path(self.data, column)
        return self

    def merge(self, data: Document) -> 'Model':
        """Deep-merge data into the current values."""
        self.data = _deep_merge(self.data, data)
        return self

    def replace_with(self, data: Document) -> 'Model':
        """Replace every value, keeping id and _id unless data has its own."""
        data = copy.deepcopy(data)
        for key in ("id", "_id"):
            if not data.get(key) and self.data.get(key):
                data[key] = self.data[key]
        self.data = data
        return self

    def only(self, columns: List[str]) -> Document:
        result: Document = {}
        for column in columns:
            value = get_path(self.data, column, MISSING)
            if value is not MISSING:
                set_path(result, column, copy.deepcopy(value))
        return result

    def except_(self, columns: List[str]) -> Document:
        result = copy.deepcopy(self.data)
        for column in columns:
            unset_path(result, column)
        return result

    def increment(self, column: str, value: Union[int, float] = 1) -> 'Model':
        return self.set(column, self.get(column, 0) + value)

    def decrement(self, column: str, value: Union[int, float] = 1) -> 'Model':
        return self.set(column, self.get(column, 0) - value)

    def is_new_model(self) -> bool:
        return not self.data.get("_id") or self.is_restored

    def is_dirty(self, column: Optional[str] = None) -> bool:
        if column is None:
            return self.data != self.original_data
        if self.is_new_model():
            return True
        return get_path(self.data, column) != get_path(self.original_data, column)

    @property
    def embedded_data(self) -> Document:
        """The copy of this record stored inside other documents."""
        if self.embed_all_except:
            return self.except_(self.embed_all_except)
        if self.embed_all_except_timestamps_and_user_columns:
            return self.except_([
                self.created_at_column,
                self.updated_at_column,
                self.deleted_at_column,
                self.created_by_column,
                self.updated_by_column,
                self.deleted_by_column,
            ])
        if self.embedded:
            return self.only(self.embedded)
        return copy.deepcopy(self.data)

    def clone(self) -> 'Model':
        return type(self)(copy.deepcopy(self.data))

    # ------------------------------------------------------------------
    # Embedded lists
    # ------------------------------------------------------------------

    @staticmethod
    def _embed_value(value: Any, embed_with: Optional[str] = None) -> Any:
        if isinstance(value, Model):
            if embed_with:
                embedded = getattr(value, embed_with)
                return embedded() if callable(embedded) else embedded
            return value.embedded_data
        return value

    def associate(self, column: str, value: Any, embed_with: Optional[str] = None) -> 'Model':
        """Append a record (or raw value) to the list at column."""
        value = self._embed_value(value, embed_with)
        if value is None:
            return self
        items = copy.deepcopy(self.get(column) or [])
        items.append(value)
        return self.set(column, items)

    def reassociate(self, column: str, value: Any, embed_with: Optional[str] = None) -> 'Model':
        """Replace the element with the same id in the list at column, or append it."""
        value = self._embed_value(value, embed_with)
        if value is None:
            return self
        items = copy.deepcopy(self.get(column) or [])
        index = find_index(items, lambda item: _identity(item) == _identity(value))
        if index is None:
            items.append(value)
        else:
            items[index] = value
        return self.set(column, items)

    def disassociate(self, column: str, value: Any) -> 'Model':
        """Remove the element with the same id from the list at column."""
        value = self._embed_value(value)
        items = self.get(column)
        if value is None or not isinstance(items, list):
            return self
        items = copy.deepcopy(items)
        index = find_index(items, lambda item: _identity(item) == _identity(value))
        if index is not None:
            items.pop(index)
        return self.set(column, items)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    async def _fire(self, event: str, *args: Any):
        await type(self).trigger_event(event, self, *args)

    def _apply_default_values(self):
        defaults = {}
        for key, value in self.default_value.items():
            defaults[key] = value(self) if callable(value) else copy.deepcopy(value)
        if defaults:
            self.data = _deep_merge(defaults, self.data)

    async def _cast(self, column: str, value: Any, cast_type: Any) -> Any:
        if isinstance(value, Model):
            return value.embedded_data
        if isinstance(cast_type, type) and issubclass(cast_type, Model):
            if isinstance(value, dict):
                return value
            related = await cast_type.find(value)
            return related.embedded_data if related else None
        if callable(cast_type):
            result = cast_type(value, column, self)
            if inspect.isawaitable(result):
                result = await result
            return result
        try:
            return cast_value(value, cast_type)
        except (TypeError, ValueError) as e:
            raise ValidationError(f"Cannot cast {column}={value!r} to {cast_type}: {e}") from e

    async def _cast_data(self, force_update: bool = False):
        for column, cast_type in self.casts.items():
            if not force_update and not self.is_dirty(column):
                continue
            value = self.get(column, MISSING)
            if value is MISSING:
                continue
            if isinstance(value, list) and cast_type not in ("array", "location"):
                value = [await self._cast(column, item, cast_type) for item in value]
            else:
                value = await self._cast(column, value, cast_type)
            self.set(column, value)

    async def save(self, merged_data: Optional[Document] = None, trigger_events: bool = True,
                   cast: bool = True, force_update: bool = False) -> 'Model':
        """
        Insert or update the record, then sync its embedded copies.

        Args:
            merged_data: Values deep-merged into the record first
            trigger_events: Fire saving/creating/updating listeners
            cast: Apply casts (only to changed columns unless force_update)
            force_update: Cast every column

        Raises:
            SyncError: If syncing embedded copies failed
        """
        executor = type(self).get_executor()
        old_record = None

        try:
            if merged_data:
                self.merge(merged_data)

            if not self.is_new_model():
                if cast:
                    await self._cast_data(force_update)

                if self.data == self.original_data:
                    return self

                mode = "update"
                old_record = type(self)(self.original_data)

                if self.updated_at_column:
                    self.data[self.updated_at_column] = utc_now()

                if trigger_events:
                    await self._fire('updating', old_record)
                    await self._fire('saving', old_record)

                await executor.replace_one(self.collection, {"_id": self.data["_id"]}, self.data)

                if trigger_events:
                    await self._fire('updated', old_record)
                    await self._fire('saved', old_record)
            else:
                mode = "create"
                self._apply_default_values()

                if not self.data.get("id"):
                    self.data["id"] = await type(self).generate_next_id()

                now = utc_now()
                if self.created_at_column:
                    self.data[self.created_at_column] = now
                if self.updated_at_column:
                    self.data[self.updated_at_column] = now

                if cast:
                    await self._cast_data()

                if trigger_events:
                    await self._fire('creating')
                    await self._fire('saving')

                self.data["_id"] = await executor.insert_one(self.collection, self.data)
                self.is_restored = False

                if trigger_events:
                    await self._fire('created')
                    await self._fire('saved')
        except Exception as e:
            self.logger.error(f"Error in {type(self).__name__}.save(): {e}", exc_info=True)
            raise

        self.original_data = copy.deepcopy(self.data)
        await self.start_syncing(mode, old_record)
        return self

    async def silent_saving(self, merged_data: Optional[Document] = None, cast: bool = True) -> 'Model':
        """Save without firing lifecycle events."""
        return await self.save(merged_data, trigger_events=False, cast=cast)

    async def destroy(self):
        """
        Delete the record according to delete_strategy, then apply the
        on-delete policy of every sync rule.
        """
        if not self.data.get("_id"):
            return

        executor = type(self).get_executor()
        strategy = self.delete_strategy

        if self.deleted_at_column:
            self.data[self.deleted_at_column] = utc_now()

        try:
            if strategy is DeleteStrategy.MOVE_TO_TRASH:
                await executor.insert_one(f"{self.collection}Trash", {
                    "document": copy.deepcopy(self.data),
                    "createdAt": utc_now(),
                })

            await self._fire('deleting')

            if strategy is DeleteStrategy.SOFT_DELETE:
                await executor.replace_one(self.collection, {"_id": self.data["_id"]}, self.data)
            else:
                await executor.delete_one(self.collection, {"_id": self.data["_id"]})

            await self._fire('deleted')
        except Exception as e:
            self.logger.error(f"Error in {type(self).__name__}.destroy(): {e}", exc_info=True)
            raise

        await self.sync_destruction()

    async def start_syncing(self, mode: str, old_record: Optional['Model'] = None):
        for rule in self.sync_with:
            await rule.sync(self, mode, old_record)

    async def sync_destruction(self):
        for rule in self.sync_with:
            await rule.sync_destruction(self)

    # ------------------------------------------------------------------
    # Class-level CRUD
    # ------------------------------------------------------------------

    @classmethod
    async def _prepare_filters(cls, filters: Optional[Document] = None) -> Document:
        filters = dict(filters or {})
        with_deleted = filters.pop("with_deleted", False)

        if isinstance(filters.get("_id"), str) and ObjectId.is_valid(filters["_id"]):
            filters["_id"] = ObjectId(filters["_id"])

        if cls.delete_strategy is DeleteStrategy.SOFT_DELETE and not with_deleted:
            filters.setdefault(cls.deleted_at_column, None)

        filters = normalize_dates(filters)
        await cls.trigger_event('fetching', cls, filters)
        return filters

    @classmethod
    async def create(cls, data: Document) -> 'Model':
        model = cls(data)
        await model.save()
        return model

    @classmethod
    async def find(cls, id: Any) -> Optional['Model']:
        if isinstance(id, str) and id.isdigit():
            id = int(id)
        return await cls.find_by(cls.primary_id_column, id)

    @classmethod
    async def find_by(cls, column: str, value: Any) -> Optional['Model']:
        return await cls.first({column: value})

    @classmethod
    async def first(cls, filters: Optional[Document] = None) -> Optional['Model']:
        document = await cls.get_executor().find_one(cls.collection, await cls._prepare_filters(filters))
        return cls(document) if document else None

    @classmethod
    async def last(cls, filters: Optional[Document] = None) -> Optional['Model']:
        documents = await cls.get_executor().find_many(
            cls.collection, await cls._prepare_filters(filters),
            sort={cls.primary_id_column: -1}, limit=1,
        )
        return cls(documents[0]) if documents else None

    @classmethod
    async def latest(cls, filters: Optional[Document] = None) -> List['Model']:
        documents = await cls.get_executor().find_many(
            cls.collection, await cls._prepare_filters(filters),
            sort={cls.created_at_column: -1},
        )
        return [cls(document) for document in documents]

    @classmethod
    async def list(cls, filters: Optional[Document] = None) -> List['Model']:
        documents = await cls.get_executor().find_many(cls.collection, await cls._prepare_filters(filters))
        return [cls(document) for document in documents]

    @classmethod
    async def count(cls, filters: Optional[Document] = None) -> int:
        return await cls.get_executor().count(cls.collection, await cls._prepare_filters(filters))

    @classmethod
    async def exists(cls, filters: Optional[Document] = None) -> bool:
        return await cls.first(filters) is not None

    @classmethod
    async def distinct(cls, column: str, filters: Optional[Document] = None) -> List[Any]:
        return await cls.get_executor().distinct(cls.collection, column, await cls._prepare_filters(filters))

    @classmethod
    async def paginate(cls, filters: Optional[Document] = None, page: int = 1,
                       limit: Optional[int] = None) -> Dict[str, Any]:
        query = cls.aggregate()
        filters = await cls._prepare_filters(filters)
        if filters:
            query.where(filters)
        return await query.paginate(page, limit)

    @classmethod
    async def chunk(cls, limit: int, callback: Callable, filters: Optional[Document] = None):
        query = cls.aggregate()
        filters = await cls._prepare_filters(filters)
        if filters:
            query.where(filters)
        await query.chunk(limit, callback)

    @classmethod
    async def update(cls, id: Any, data: Document) -> Optional['Model']:
        model = await cls.find(id)
        if model is None:
            return None
        await model.save(data)
        return model

    @classmethod
    async def delete(cls, filters: Union[Document, int, str, ObjectId, None] = None) -> int:
        """
        Delete by primary id (scalar), _id (ObjectId) or filter dict.

        Deletes directly in the collection: no events, no sync rules.
        """
        executor = cls.get_executor()
        if isinstance(filters, ObjectId):
            return await executor.delete_one(cls.collection, {"_id": filters})
        if isinstance(filters, (int, str)):
            return await executor.delete_one(cls.collection, {cls.primary_id_column: filters})
        return await executor.delete_many(cls.collection, await cls._prepare_filters(filters))

    @classmethod
    async def find_or_create(cls, filters: Document, data: Document) -> 'Model':
        model = await cls.first(filters)
        if model is None:
            model = await cls.create(data)
        return model

    @classmethod
    async def update_or_create(cls, filters: Document, data: Document) -> 'Model':
        model = await cls.first(filters)
        if model is None:
            return await cls.create(data)
        await model.save(data)
        return model

    def __repr__(self):
        return f"<{type(self).__name__} id={self.id}>"
