# SPDX-License-Identifier: AGPL-3.0-or-later
# Copyright (C) 2025 red1239109-cmd
# ==============================================================================
# File: dashboard.py
# Metrics registry with bounded history, per-metric subscribers, pluggable
# views and component state tracking. A background thread refreshes the
# system.* metrics every `update_interval` seconds.
# ==============================================================================
from __future__ import annotations

import logging
import secrets
import threading
import time
from collections import deque
from dataclasses import dataclass, asdict
from typing import Any, Callable, Dict, List, Optional, Protocol

import psutil

from . import now_ts, tail
from .config import DashboardConfig
from .errors import DashboardError
from .events import EventEmitter
from .metrics import VaultMetrics

log = logging.getLogger("hdr_vault.dashboard")

BASE_METRICS = (
    "system.uptime",
    "system.memory",
    "system.cpu",
    "performance.throughput",
    "performance.latency",
    "performance.efficiency",
)


class View(Protocol):
    def render(self) -> Any: ...
    def update(self, metrics: Dict[str, "MetricSample"]) -> None: ...
    def cleanup(self) -> None: ...


@dataclass
class MetricSample:
    value: Any
    timestamp: float


def _is_num(x: Any) -> bool:
    return isinstance(x, (int, float)) and not isinstance(x, bool) and x == x


class DashboardManager(EventEmitter):
    def __init__(self, config: Optional[DashboardConfig] = None, metrics: Optional[VaultMetrics] = None):
        super().__init__()
        self.id = secrets.token_hex(16)
        self.config = config or DashboardConfig()
        self.prom = metrics

        self.views: Dict[str, View] = {}
        self.metrics: Dict[str, MetricSample] = {}
        self.history: Dict[str, deque] = {}
        self.subscriptions: Dict[str, Dict[str, Callable[[Any], None]]] = {}

        self.component_states: Dict[str, Dict[str, Any]] = {}
        self.component_history: Dict[str, deque] = {}
        self.active_view = "overview"

        self.status = "initializing"
        self.last_update = now_ts()
        self.started_at = time.monotonic()

        self._process = psutil.Process()
        self._lock = threading.RLock()
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    # ------------------------------------------------------------------
    # lifecycle
    # ------------------------------------------------------------------
    def initialize(self, start_cycle: bool = True) -> bool:
        try:
            self._initialize_metric_collectors()
            if start_cycle:
                self._start_update_cycle()
            self.status = "ready"
            return True
        except Exception:
            self.status = "error"
            raise

    def cleanup(self) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=max(1.0, self.config.update_interval * 2))
            self._thread = None

        with self._lock:
            for view_id, view in list(self.views.items()):
                try:
                    view.cleanup()
                except Exception as e:
                    log.error(f"View cleanup error ({view_id}): {e}")
            self.views.clear()
            self.metrics.clear()
            self.history.clear()
            self.subscriptions.clear()
            self.component_states.clear()
            self.component_history.clear()
        self.status = "stopped"

    # ------------------------------------------------------------------
    # views
    # ------------------------------------------------------------------
    def register_view(self, view_id: str, view: View) -> bool:
        with self._lock:
            if view_id in self.views:
                raise DashboardError(f"View '{view_id}' already registered")
            if not all(callable(getattr(view, m, None)) for m in ("render", "update", "cleanup")):
                raise DashboardError("Invalid view interface")
            self.views[view_id] = view
        return True

    def unregister_view(self, view_id: str) -> bool:
        with self._lock:
            view = self.views.pop(view_id, None)
        if view is None:
            return False
        view.cleanup()
        return True

    def set_active_view(self, view: str, **parameters) -> None:
        self.active_view = view
        self.emit("view-changed", {"view": view, "parameters": parameters, "timestamp": now_ts()})

    # ------------------------------------------------------------------
    # metrics + subscribers
    # ------------------------------------------------------------------
    def subscribe(self, metric_id: str, callback: Callable[[Any], None]) -> str:
        subscription_id = secrets.token_hex(8)
        with self._lock:
            self.subscriptions.setdefault(metric_id, {})[subscription_id] = callback
        return subscription_id

    def unsubscribe(self, metric_id: str, subscription_id: str) -> bool:
        with self._lock:
            subs = self.subscriptions.get(metric_id)
            if not subs:
                return False
            return subs.pop(subscription_id, None) is not None

    def update_metric(self, metric_id: str, value: Any) -> None:
        sample = MetricSample(value=value, timestamp=now_ts())
        with self._lock:
            self.metrics[metric_id] = sample
            hist = self.history.get(metric_id)
            if hist is None:
                hist = self.history[metric_id] = deque(maxlen=int(self.config.max_history))
            hist.append(sample)
            callbacks = list(self.subscriptions.get(metric_id, {}).values())

        if self.prom is not None and _is_num(value):
            self.prom.dashboard.labels(metric=metric_id).set(float(value))

        for callback in callbacks:
            try:
                callback(value)
            except Exception as e:
                log.error(f"Subscriber notification error ({metric_id}): {e}")

    def increment(self, metric_id: str, amount: float = 1) -> float:
        with self._lock:
            current = self.metrics.get(metric_id)
            base = current.value if current is not None and _is_num(current.value) else 0
            value = base + amount
            self.update_metric(metric_id, value)
        return value

    def get_metric(self, metric_id: str) -> Optional[MetricSample]:
        with self._lock:
            return self.metrics.get(metric_id)

    def get_metric_history(self, metric_id: str, limit: Optional[int] = None) -> List[MetricSample]:
        with self._lock:
            return tail(self.history.get(metric_id, ()), limit)

    # ------------------------------------------------------------------
    # component states
    # ------------------------------------------------------------------
    def update_component_state(self, component_id: str, state: Dict[str, Any]) -> None:
        stamped = {**state, "timestamp": now_ts()}
        with self._lock:
            self.component_states[component_id] = stamped
            hist = self.component_history.get(component_id)
            if hist is None:
                hist = self.component_history[component_id] = deque(maxlen=int(self.config.max_component_history))
            hist.append(stamped)
        self.emit("component-state-updated", {"componentId": component_id, "timestamp": stamped["timestamp"]})

    def get_component_state(self, component_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            return self.component_states.get(component_id)

    def get_component_history(self, component_id: str, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        with self._lock:
            return tail(self.component_history.get(component_id, ()), limit)

    # ------------------------------------------------------------------
    # status
    # ------------------------------------------------------------------
    def get_status(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "id": self.id,
                "status": self.status,
                "views": list(self.views.keys()),
                "metrics": list(self.metrics.keys()),
                "subscriptions": [k for k, v in self.subscriptions.items() if v],
                "activeView": self.active_view,
                "components": len(self.component_states),
                "lastUpdate": self.last_update,
            }

    def snapshot(self) -> Dict[str, Dict[str, Any]]:
        with self._lock:
            return {k: asdict(v) for k, v in self.metrics.items()}

    # ------------------------------------------------------------------
    # update cycle
    # ------------------------------------------------------------------
    def refresh(self) -> None:
        """One tick of the update cycle, run synchronously."""
        self._update_metrics()
        self._update_views()
        self.last_update = now_ts()

    def _initialize_metric_collectors(self) -> None:
        with self._lock:
            for metric_id in BASE_METRICS:
                self.metrics[metric_id] = MetricSample(value=0, timestamp=now_ts())
                self.history[metric_id] = deque(maxlen=int(self.config.max_history))

    def _start_update_cycle(self) -> None:
        self._stop.clear()
        self._thread = threading.Thread(target=self._cycle, name="hdr-dashboard", daemon=True)
        self._thread.start()

    def _cycle(self) -> None:
        while not self._stop.wait(self.config.update_interval):
            try:
                self.refresh()
            except Exception as e:
                log.error(f"Dashboard update error: {e}")

    def _update_metrics(self) -> None:
        self.update_metric("system.uptime", time.monotonic() - self.started_at)
        self.update_metric("system.memory", self._process.memory_info().rss)
        self.update_metric("system.cpu", self._process.cpu_percent(interval=None))
        self.emit("metrics-updated", {"timestamp": now_ts(), "metrics": self.snapshot()})

    def _update_views(self) -> None:
        with self._lock:
            views = list(self.views.items())
            current = dict(self.metrics)
        for view_id, view in views:
            try:
                view.update(current)
            except Exception as e:
                log.error(f"View update error ({view_id}): {e}")
