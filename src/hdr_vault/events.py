# SPDX-License-Identifier: AGPL-3.0-or-later
# Copyright (C) 2025 red1239109-cmd
from __future__ import annotations

import logging
import threading
from collections import defaultdict
from typing import Any, Callable, Dict, List

log = logging.getLogger("hdr_vault.events")

Listener = Callable[[Dict[str, Any]], None]


class EventEmitter:
    """Minimal synchronous pub/sub used by the vault components.

    Listeners receive a single payload dict. A listener that raises is logged
    and skipped; the remaining listeners still run.
    """

    def __init__(self):
        self._listeners: Dict[str, List[Listener]] = defaultdict(list)
        self._listeners_lock = threading.RLock()

    def on(self, event: str, listener: Listener) -> Listener:
        with self._listeners_lock:
            self._listeners[event].append(listener)
        return listener

    def off(self, event: str, listener: Listener) -> bool:
        with self._listeners_lock:
            handlers = self._listeners.get(event, [])
            if listener in handlers:
                handlers.remove(listener)
                return True
        return False

    def emit(self, event: str, payload: Dict[str, Any] = None) -> int:
        with self._listeners_lock:
            handlers = list(self._listeners.get(event, []))
        for handler in handlers:
            try:
                handler(payload or {})
            except Exception as e:
                log.error(f"Listener for '{event}' failed: {e}")
        return len(handlers)

    def listener_count(self, event: str) -> int:
        with self._listeners_lock:
            return len(self._listeners.get(event, []))
