#!/usr/bin/env python3
"""
Embedded-copy sync rules.

A rule says "documents of <model> embed this record under <columns>; keep
those copies current". Rules are declared on the source model:

    class Customer(Model):
        collection = "customers"

    Customer.sync_with = [
        Order.sync("customer").update_when_change(["name"]).remove_on_delete(),
        Shop.sync_many("orders.customer"),
    ]

Saving or destroying a Customer then fans out to every referencing document,
one target at a time.
"""

import copy
import logging
from enum import Enum
from typing import Any, Callable, List, Optional, Tuple, Union

from ..exceptions import SyncError, ValidationError
from ..log_manager import get_logger, log_with_context


class OnDelete(str, Enum):
    UNSET = "unset"
    REMOVE = "remove"
    IGNORE = "ignore"


class SyncMode(str, Enum):
    SINGLE = "single"
    MANY = "many"


class FanOutPolicy(str, Enum):
    """What a transition does after one target fails."""
    CONTINUE = "continue"
    ABORT = "abort"


def _embedded_id(value: Any) -> Any:
    if isinstance(value, dict):
        return value.get("id")
    return None


class ModelSync:
    """
    Sync rule for one target model.

    Args:
        model: Target model class whose documents hold the embedded copies
        columns: Column (or columns) holding the copy; "parent.child" in many
            mode means an array "parent" whose elements embed under "child"
        embed_method: Record attribute (or method) producing the payload
    """

    def __init__(self, model, columns: Union[str, List[str]], embed_method: str = "embedded_data"):
        columns = [columns] if isinstance(columns, str) else list(columns or [])
        if not columns:
            raise ValidationError(f"Sync rule for {model.__name__} needs at least one column")

        self.model = model
        self.columns = columns
        self.embed_method = embed_method
        self.when_delete = OnDelete.UNSET
        self.sync_mode = SyncMode.SINGLE
        self.embed_on_create = ""
        self.update_when_change_columns: Optional[List[str]] = None
        self.query_refiner: Optional[Callable] = None
        self.failure_policy = FanOutPolicy.CONTINUE
        self.logger = get_logger('ModelSync', component='sync')

    # Declaration

    def update_when_change(self, columns: Union[str, List[str]]) -> 'ModelSync':
        """Skip update syncing unless one of columns changed."""
        self.update_when_change_columns = [columns] if isinstance(columns, str) else list(columns)
        return self

    def where(self, refiner: Callable) -> 'ModelSync':
        """refiner(query) narrows the target query."""
        self.query_refiner = refiner
        return self

    def unset_on_delete(self) -> 'ModelSync':
        self.when_delete = OnDelete.UNSET
        return self

    def remove_on_delete(self) -> 'ModelSync':
        self.when_delete = OnDelete.REMOVE
        return self

    def ignore_on_delete(self) -> 'ModelSync':
        self.when_delete = OnDelete.IGNORE
        return self

    def embed_on_create_from(self, column: str) -> 'ModelSync':
        """On create, embed the record into the target referenced by column.id."""
        self.embed_on_create = column
        return self

    def sync_many(self) -> 'ModelSync':
        self.sync_mode = SyncMode.MANY
        return self

    def continue_on_failure(self) -> 'ModelSync':
        self.failure_policy = FanOutPolicy.CONTINUE
        return self

    def abort_on_failure(self) -> 'ModelSync':
        self.failure_policy = FanOutPolicy.ABORT
        return self

    # Helpers

    def embed_payload(self, record) -> Any:
        payload = getattr(record, self.embed_method, None)
        if callable(payload):
            payload = payload()
        if payload is None:
            payload = record.embedded_data
        return payload

    def _targets_query(self, record):
        query = self.model.aggregate().or_where({f"{column}.id": record.id for column in self.columns})
        if self.query_refiner:
            self.query_refiner(query)
        return query

    def _references(self, target, column: str, record_id: Any) -> bool:
        """Whether column of target holds the copy of record_id."""
        value = target.get(column)
        if self.sync_mode is SyncMode.MANY and isinstance(value, list):
            return any(_embedded_id(item) == record_id for item in value)
        return _embedded_id(value) == record_id

    async def _find_targets(self, action: str, record) -> List[Any]:
        try:
            return await self._targets_query(record).get()
        except Exception as e:
            self._log_failure(action, record, None, e)
            raise

    def _log_failure(self, action: str, record, target, error: Exception):
        log_with_context(
            self.logger, logging.ERROR,
            f"Failed to {action} {self.model.__name__} embedding {type(record).__name__} "
            f"{record.id}: {error}",
            {
                "source": record.data,
                "target_collection": self.model.collection,
                "target_id": target.id if target is not None else None,
                "columns": self.columns,
            },
        )

    def _fail(self, action: str, record, target, error: Exception,
              failures: List[Tuple[Any, Exception]]):
        self._log_failure(action, record, target, error)
        failures.append((target, error))
        if self.failure_policy is FanOutPolicy.ABORT:
            raise SyncError(
                f"Syncing {type(record).__name__} {record.id} into {self.model.__name__} aborted: {error}",
                failures,
            ) from error

    def _raise_failures(self, action: str, record, failures: List[Tuple[Any, Exception]]):
        if failures:
            raise SyncError(
                f"Failed to {action} {len(failures)} {self.model.__name__} record(s) "
                f"embedding {type(record).__name__} {record.id}",
                failures,
            )

    # Transitions

    async def sync(self, record, save_mode: str, old_record=None):
        """Dispatch a save of record ("create" or "update")."""
        if save_mode == "update":
            return await self.sync_update(record, old_record)

        if not self.embed_on_create:
            return

        try:
            target = await self.model.first({"id": record.get(f"{self.embed_on_create}.id")})
            payload = self.embed_payload(record)
        except Exception as e:
            self._log_failure("embed into", record, None, e)
            raise

        if target is None:
            return

        failures: List[Tuple[Any, Exception]] = []
        try:
            for column in self.columns:
                if self.sync_mode is SyncMode.SINGLE:
                    target.set(column, payload)
                else:
                    target.associate(column, payload)
            await target.save()
        except Exception as e:
            self._fail("embed into", record, target, e, failures)

        self._raise_failures("embed into", record, failures)

    async def sync_update(self, record, old_record=None):
        """Refresh every embedded copy of record."""
        if self.update_when_change_columns and old_record is not None:
            if all(record.get(column) == old_record.get(column)
                   for column in self.update_when_change_columns):
                return

        targets = await self._find_targets("update", record)
        try:
            payload = self.embed_payload(record)
        except Exception as e:
            self._log_failure("update", record, None, e)
            raise

        failures: List[Tuple[Any, Exception]] = []

        for target in targets:
            try:
                for column in self.columns:
                    if self.sync_mode is SyncMode.MANY and "." in column:
                        self._replace_nested(target, column, record.id, copy.deepcopy(payload))
                    elif not self._references(target, column, record.id):
                        continue
                    elif self.sync_mode is SyncMode.SINGLE:
                        target.set(column, copy.deepcopy(payload))
                    else:
                        target.reassociate(column, copy.deepcopy(payload))
                # payload is already embedded form
                await target.save(cast=False)
            except Exception as e:
                self._fail("update", record, target, e, failures)

        self._raise_failures("update", record, failures)

    def _replace_nested(self, target, column: str, record_id: Any, payload: Any):
        top_key, nested_key = column.split(".", 1)
        items = target.get(top_key) or []
        if not isinstance(items, list):
            return

        changed = False
        for item in items:
            if isinstance(item, dict) and _embedded_id(item.get(nested_key)) == record_id:
                item[nested_key] = payload
                changed = True

        if changed:
            target.set(top_key, items)

    def _unset_nested(self, target, column: str, record_id: Any):
        top_key, nested_key = column.split(".", 1)
        items = target.get(top_key) or []
        if not isinstance(items, list):
            return

        for item in items:
            if isinstance(item, dict) and _embedded_id(item.get(nested_key)) == record_id:
                item.pop(nested_key, None)
        target.set(top_key, items)

    async def sync_destruction(self, record):
        """Apply the on-delete policy to every document embedding record."""
        if self.when_delete is OnDelete.IGNORE:
            return

        targets = await self._find_targets("clean up", record)
        failures: List[Tuple[Any, Exception]] = []

        for target in targets:
            try:
                if self.when_delete is OnDelete.REMOVE:
                    await target.destroy()
                    continue

                for column in self.columns:
                    if self.sync_mode is SyncMode.MANY and "." in column:
                        self._unset_nested(target, column, record.id)
                    elif not self._references(target, column, record.id):
                        continue
                    elif self.sync_mode is SyncMode.SINGLE:
                        target.unset(column)
                    else:
                        target.disassociate(column, record)
                await target.save()
            except Exception as e:
                self._fail("clean up", record, target, e, failures)

        self._raise_failures("clean up", record, failures)

    def __repr__(self):
        return (f"<ModelSync {self.model.__name__} columns={self.columns} "
                f"mode={self.sync_mode.value} on_delete={self.when_delete.value}>")
