# SPDX-License-Identifier: AGPL-3.0-or-later
# Copyright (C) 2025 red1239109-cmd
from __future__ import annotations

import logging
import secrets
import threading
import time
from collections import deque
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass, asdict
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from . import tail
from .config import AccelerationConfig
from .errors import AccelerationError
from .metrics import VaultMetrics

log = logging.getLogger("hdr_vault.acceleration")

TaskSpec = Tuple[str, Callable[..., Any]]


@dataclass
class TaskResult:
    id: str
    name: str
    ok: bool
    durationMs: float
    error: Optional[str] = None
    result: Any = None


class AccelerationController:
    """Runs queued tasks on a thread pool and reports progress."""

    def __init__(self, config: Optional[AccelerationConfig] = None, metrics: Optional[VaultMetrics] = None):
        self.config = config or AccelerationConfig()
        self.metrics = metrics
        self._executor: Optional[ThreadPoolExecutor] = None
        self._pending: Dict[str, Future] = {}
        self._completed: deque = deque(maxlen=int(self.config.history_size))
        self._succeeded = 0
        self._failed = 0
        self._total_ms = 0.0
        self._lock = threading.RLock()

    @property
    def active(self) -> bool:
        return self._executor is not None

    def start(self, tasks: Optional[Iterable[TaskSpec]] = None) -> Dict[str, Any]:
        with self._lock:
            if self.active:
                return self.get_status()
            self._executor = ThreadPoolExecutor(
                max_workers=max(1, int(self.config.workers)), thread_name_prefix="hdr-accel"
            )
            planned = 0
            for name, fn in tasks or []:
                self.submit(name, fn)
                planned += 1

        log.info(f"Acceleration started ({self.config.workers} workers, {planned} planned tasks)")
        return {"status": "started", "workers": int(self.config.workers), "plannedTasks": planned}

    def submit(self, name: str, fn: Callable[..., Any], *args, **kwargs) -> str:
        with self._lock:
            if not self.active:
                raise AccelerationError("Acceleration is not active")
            task_id = f"task_{secrets.token_hex(4)}"
            future = self._executor.submit(self._run, task_id, name, fn, args, kwargs)
            self._pending[task_id] = future
        return task_id

    def _run(self, task_id: str, name: str, fn: Callable[..., Any], args, kwargs) -> TaskResult:
        start = time.perf_counter()
        try:
            value = fn(*args, **kwargs)
            res = TaskResult(task_id, name, True, 0.0, result=value)
        except Exception as e:
            log.warning(f"Task {name} ({task_id}) failed: {e}")
            res = TaskResult(task_id, name, False, 0.0, error=str(e))
        res.durationMs = (time.perf_counter() - start) * 1000.0

        with self._lock:
            self._pending.pop(task_id, None)
            self._completed.append(res)
            self._total_ms += res.durationMs
            if res.ok:
                self._succeeded += 1
            else:
                self._failed += 1
        if self.metrics is not None:
            self.metrics.tasks.labels(outcome="ok" if res.ok else "error").inc()
        return res

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until every queued task has finished. Returns False on timeout."""
        deadline = None if timeout is None else time.monotonic() + timeout
        while True:
            with self._lock:
                futures = list(self._pending.values())
            if not futures:
                return True
            for f in futures:
                remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
                try:
                    f.result(timeout=remaining)
                except FutureTimeout:
                    return False

    def get_status(self) -> Dict[str, Any]:
        with self._lock:
            if not self.active:
                return {"status": "inactive"}
            done = self._succeeded + self._failed
            remaining = len(self._pending)
            total = done + remaining
            return {
                "status": "active",
                "metrics": {
                    "workers": int(self.config.workers),
                    "succeeded": self._succeeded,
                    "failed": self._failed,
                    "avgDurationMs": (self._total_ms / done) if done else 0.0,
                },
                "tasksRemaining": remaining,
                "tasksCompleted": done,
                "totalTasks": total,
                "progress": (done / total) if total else 0.0,
            }

    def get_completed(self, limit: Optional[int] = 5) -> List[Dict[str, Any]]:
        with self._lock:
            recent = tail(self._completed, limit)
        return [{k: v for k, v in asdict(r).items() if k != "result"} for r in recent]

    def stop(self, wait: bool = True) -> Dict[str, Any]:
        with self._lock:
            executor, self._executor = self._executor, None
        if executor is None:
            return {"status": "inactive"}
        log.info("Shutting down acceleration pool...")
        executor.shutdown(wait=wait, cancel_futures=not wait)
        with self._lock:
            self._pending.clear()
            return {
                "status": "stopped",
                "tasksCompleted": self._succeeded + self._failed,
                "succeeded": self._succeeded,
                "failed": self._failed,
            }
