# SPDX-License-Identifier: AGPL-3.0-or-later
# Copyright (C) 2025 red1239109-cmd
from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from . import __version__
from .acceleration import AccelerationController
from .capsule import StateCapsuleEngine
from .config import VaultConfig
from .dashboard import DashboardManager
from .errors import NotInitializedError
from .metrics import VaultMetrics
from .persistence import StatePersistenceManager
from .security import StateSecurityManager

log = logging.getLogger("hdr_vault.app")


class VaultApplication:
    """Wires storage, security, capsules, the task pool and the dashboard."""

    def __init__(self, config: Optional[VaultConfig] = None, start_dashboard_cycle: bool = True):
        self.config = config or VaultConfig()
        self.version = __version__
        self.metrics = VaultMetrics()
        self.persistence = StatePersistenceManager(self.config.persistence)
        self.security = StateSecurityManager(self.config.security)
        self.capsules = StateCapsuleEngine(self.security)
        self.acceleration = AccelerationController(self.config.acceleration, metrics=self.metrics)
        self.dashboard = DashboardManager(self.config.dashboard, metrics=self.metrics)
        self.initialized = False
        self._start_dashboard_cycle = start_dashboard_cycle

        self.persistence.on("state-saved", self._on_state_saved)
        self.persistence.on("state-deleted", self._on_state_deleted)
        self.persistence.on("cleanup-complete", self._on_cleanup)

    # ------------------------------------------------------------------
    # lifecycle
    # ------------------------------------------------------------------
    def initialize(self) -> "VaultApplication":
        if self.initialized:
            return self
        log.info(f"Initializing HDR Vault {self.version}...")
        self.security.initialize()
        self.persistence.initialize()
        self.dashboard.initialize(start_cycle=self._start_dashboard_cycle)
        self.acceleration.start()
        self.metrics.storage_bytes.set(self.persistence.storage_size)
        self.initialized = True
        log.info("HDR Vault ready")
        return self

    def shutdown(self) -> None:
        if not self.initialized:
            return
        log.warning("Shutting down HDR Vault...")
        self.acceleration.stop(wait=True)
        self.dashboard.cleanup()
        self.persistence.shutdown()
        self.security.shutdown()
        self.initialized = False

    def _ensure_initialized(self) -> None:
        if not self.initialized:
            raise NotInitializedError("HDR Vault")

    # ------------------------------------------------------------------
    # capsules
    # ------------------------------------------------------------------
    def create_capsule(self, ai_state: Dict[str, Any]) -> Dict[str, Any]:
        self._ensure_initialized()
        capsule = self.capsules.create(ai_state)
        self._store_capsule(capsule)
        self.dashboard.increment("capsules.created")
        return capsule

    def restore_capsule(self, capsule: Dict[str, Any], target: Dict[str, Any]) -> Dict[str, Any]:
        self._ensure_initialized()
        restored = self.capsules.restore(capsule, target)
        self.dashboard.increment("capsules.restored")
        return restored

    def merge_capsules(self, capsule_a: Dict[str, Any], capsule_b: Dict[str, Any]) -> Dict[str, Any]:
        self._ensure_initialized()
        merged = self.capsules.merge(capsule_a, capsule_b)
        self._store_capsule(merged)
        self.dashboard.increment("capsules.merged")
        return merged

    def load_capsule(self, capsule_id: str) -> Dict[str, Any]:
        self._ensure_initialized()
        return self.persistence.load(capsule_id)["capsule"]

    def _store_capsule(self, capsule: Dict[str, Any]) -> None:
        header = capsule["header"]
        self.persistence.save({"id": header["id"], "kind": "capsule", "capsule": capsule})

    # ------------------------------------------------------------------
    # status
    # ------------------------------------------------------------------
    def get_acceleration_status(self) -> Dict[str, Any]:
        self._ensure_initialized()
        return self.acceleration.get_status()

    def get_development_status(self) -> Dict[str, Any]:
        self._ensure_initialized()
        return {
            "acceleration": self.acceleration.get_status(),
            "recentTasks": self.acceleration.get_completed(5),
            "storage": self.persistence.get_statistics(),
            "systemStatus": "ready" if self.initialized else "initializing",
        }

    # ------------------------------------------------------------------
    # event hooks
    # ------------------------------------------------------------------
    def _on_state_saved(self, payload: Dict[str, Any]) -> None:
        self.metrics.states_saved.inc()
        self.metrics.storage_bytes.set(self.persistence.storage_size)

    def _on_state_deleted(self, payload: Dict[str, Any]) -> None:
        self.metrics.storage_bytes.set(self.persistence.storage_size)

    def _on_cleanup(self, payload: Dict[str, Any]) -> None:
        self.metrics.states_evicted.inc(payload.get("deletedCount", 0))
        self.metrics.storage_bytes.set(self.persistence.storage_size)
