#!/usr/bin/env python3
"""
Model lifecycle listeners.

Each Model subclass owns one ModelEvents registry (created when the class is
defined); the registry of the root Model class receives every model's events.
"""

import inspect
from typing import Any, Callable, Dict, List, Optional

EVENTS = (
    'saving', 'saved',
    'creating', 'created',
    'updating', 'updated',
    'deleting', 'deleted',
    'fetching',
)


class ModelEvents:
    """Listener registry; callbacks may be plain functions or coroutines."""

    def __init__(self, collection: Optional[str] = None):
        self.collection = collection
        self.callbacks: Dict[str, List[Callable]] = {event: [] for event in EVENTS}

    def on(self, event: str, callback: Callable) -> 'ModelEvents':
        if event not in self.callbacks:
            raise ValueError(f"Unknown model event: {event}")
        self.callbacks[event].append(callback)
        return self

    def on_saving(self, callback: Callable) -> 'ModelEvents':
        """callback(model, old_model)"""
        return self.on('saving', callback)

    def on_saved(self, callback: Callable) -> 'ModelEvents':
        """callback(model, old_model)"""
        return self.on('saved', callback)

    def on_creating(self, callback: Callable) -> 'ModelEvents':
        return self.on('creating', callback)

    def on_created(self, callback: Callable) -> 'ModelEvents':
        return self.on('created', callback)

    def on_updating(self, callback: Callable) -> 'ModelEvents':
        """callback(model, old_model); the builder passes itself for bulk updates."""
        return self.on('updating', callback)

    def on_updated(self, callback: Callable) -> 'ModelEvents':
        return self.on('updated', callback)

    def on_deleting(self, callback: Callable) -> 'ModelEvents':
        return self.on('deleting', callback)

    def on_deleted(self, callback: Callable) -> 'ModelEvents':
        return self.on('deleted', callback)

    def on_fetching(self, callback: Callable) -> 'ModelEvents':
        """callback(model_class, filters) from CRUD helpers, callback(query) from builders."""
        return self.on('fetching', callback)

    def off(self, event: Optional[str] = None):
        """Remove every listener of event, or of all events."""
        for name in ([event] if event else EVENTS):
            self.callbacks[name] = []

    async def trigger(self, event: str, *args: Any):
        """Call every listener of event in registration order."""
        for callback in self.callbacks.get(event, []):
            result = callback(*args)
            if inspect.isawaitable(result):
                await result
