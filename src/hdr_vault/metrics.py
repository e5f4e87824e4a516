# SPDX-License-Identifier: AGPL-3.0-or-later
# Copyright (C) 2025 red1239109-cmd
from __future__ import annotations

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, generate_latest, CONTENT_TYPE_LATEST


class VaultMetrics:
    """Prometheus instruments, one private registry per instance so several
    applications (and test cases) can live in one process."""

    content_type = CONTENT_TYPE_LATEST

    def __init__(self, registry: CollectorRegistry = None):
        self.registry = registry or CollectorRegistry()
        self.requests = Counter(
            "hdr_vault_requests_total", "Total API requests", ["route", "status"], registry=self.registry
        )
        self.latency = Histogram(
            "hdr_vault_request_seconds", "API request duration", ["route"], registry=self.registry
        )
        self.states_saved = Counter(
            "hdr_vault_states_saved_total", "States written to storage", registry=self.registry
        )
        self.states_evicted = Counter(
            "hdr_vault_states_evicted_total", "States removed by size-based cleanup", registry=self.registry
        )
        self.storage_bytes = Gauge(
            "hdr_vault_storage_bytes", "Bytes currently held by the state store", registry=self.registry
        )
        self.tasks = Counter(
            "hdr_vault_tasks_total", "Acceleration tasks finished", ["outcome"], registry=self.registry
        )
        self.dashboard = Gauge(
            "hdr_vault_dashboard_metric", "Numeric dashboard metrics", ["metric"], registry=self.registry
        )

    def exposition(self) -> bytes:
        return generate_latest(self.registry)
