"""Persistence of the live flow for resumption."""

from __future__ import annotations

import logging

from pydantic import ValidationError

from shop_agent.flow.state import FlowState
from shop_agent.store.kv import KeyValueStore

logger = logging.getLogger(__name__)

CURRENT_FLOW_KEY = "flow:current"


class FlowSnapshotStore:
    def __init__(self, store: KeyValueStore, *, key: str = CURRENT_FLOW_KEY) -> None:
        self.store = store
        self.key = key

    def save(self, state: FlowState) -> None:
        self.store.set(self.key, state.snapshot())

    def load(self) -> FlowState | None:
        data = self.store.get(self.key)
        if not isinstance(data, dict):
            return None
        try:
            return FlowState.from_snapshot(data)
        except (KeyError, TypeError, ValueError, ValidationError) as exc:
            logger.warning("Discarding unreadable flow snapshot: %s", exc)
            self.clear()
            return None

    def clear(self) -> None:
        self.store.delete(self.key)
