# SPDX-License-Identifier: AGPL-3.0-or-later
# Copyright (C) 2025 red1239109-cmd
import threading
import unittest

from hdr_vault.config import DashboardConfig
from hdr_vault.dashboard import BASE_METRICS, DashboardManager
from hdr_vault.errors import DashboardError
from hdr_vault.metrics import VaultMetrics


class RecordingView:
    def __init__(self):
        self.updates = []
        self.cleaned = False

    def render(self):
        return "<view>"

    def update(self, metrics):
        self.updates.append(metrics)

    def cleanup(self):
        self.cleaned = True


class TestDashboard(unittest.TestCase):
    def setUp(self):
        self.prom = VaultMetrics()
        self.dash = DashboardManager(DashboardConfig(max_history=3), metrics=self.prom)
        self.dash.initialize(start_cycle=False)

    def tearDown(self):
        self.dash.cleanup()

    def test_initialize(self):
        status = self.dash.get_status()
        self.assertEqual(status["status"], "ready")
        for metric_id in BASE_METRICS:
            self.assertIn(metric_id, status["metrics"])
        self.assertEqual(self.dash.get_metric("system.cpu").value, 0)

    def test_subscribers(self):
        seen = []
        sub_id = self.dash.subscribe("jobs.queued", seen.append)
        self.assertEqual(len(sub_id), 16)

        self.dash.update_metric("jobs.queued", 4)
        self.assertTrue(self.dash.unsubscribe("jobs.queued", sub_id))
        self.assertFalse(self.dash.unsubscribe("jobs.queued", sub_id))
        self.dash.update_metric("jobs.queued", 5)

        self.assertEqual(seen, [4])
        self.assertEqual(self.dash.get_metric("jobs.queued").value, 5)

    def test_failing_subscriber_does_not_block_others(self):
        seen = []

        def bad(_):
            raise RuntimeError("subscriber down")

        self.dash.subscribe("m", bad)
        self.dash.subscribe("m", seen.append)
        self.dash.update_metric("m", "hello")
        self.assertEqual(seen, ["hello"])

    def test_history_is_bounded(self):
        for i in range(5):
            self.dash.update_metric("latency", i)
        self.assertEqual([s.value for s in self.dash.get_metric_history("latency")], [2, 3, 4])
        self.assertEqual([s.value for s in self.dash.get_metric_history("latency", limit=2)], [3, 4])
        self.assertEqual(self.dash.get_metric_history("latency", limit=0), [])
        self.assertEqual(self.dash.get_metric_history("latency", limit=-1), [])
        self.assertEqual(len(self.dash.get_metric_history("latency", limit=10)), 3)

    def test_increment_and_prometheus_mirror(self):
        self.dash.increment("capsules.created")
        self.dash.increment("capsules.created", 2)
        self.assertEqual(self.dash.get_metric("capsules.created").value, 3)
        self.assertEqual(
            self.prom.registry.get_sample_value("hdr_vault_dashboard_metric", {"metric": "capsules.created"}), 3.0
        )

    def test_views(self):
        view = RecordingView()
        self.assertTrue(self.dash.register_view("main", view))
        with self.assertRaises(DashboardError):
            self.dash.register_view("main", RecordingView())
        with self.assertRaises(DashboardError):
            self.dash.register_view("broken", object())

        self.dash.refresh()
        self.assertEqual(len(view.updates), 1)
        self.assertIn("system.uptime", view.updates[0])

        self.assertTrue(self.dash.unregister_view("main"))
        self.assertTrue(view.cleaned)
        self.assertFalse(self.dash.unregister_view("main"))

    def test_refresh_emits_metrics(self):
        events = []
        self.dash.on("metrics-updated", events.append)
        self.dash.refresh()

        self.assertEqual(len(events), 1)
        self.assertGreater(self.dash.get_metric("system.memory").value, 0)
        self.assertGreaterEqual(self.dash.get_metric("system.uptime").value, 0)
        self.assertIn("system.cpu", events[0]["metrics"])

    def test_active_view(self):
        events = []
        self.dash.on("view-changed", events.append)
        self.dash.set_active_view("storage", zoom=2)
        self.assertEqual(self.dash.get_status()["activeView"], "storage")
        self.assertEqual(events[0]["parameters"], {"zoom": 2})

    def test_component_states(self):
        events = []
        self.dash.on("component-state-updated", events.append)
        self.dash.update_component_state("persistence", {"health": "ok"})
        self.dash.update_component_state("persistence", {"health": "degraded"})

        self.assertEqual(self.dash.get_component_state("persistence")["health"], "degraded")
        self.assertEqual(len(self.dash.get_component_history("persistence")), 2)
        self.assertEqual(self.dash.get_status()["components"], 1)
        self.assertEqual(events[0]["componentId"], "persistence")

    def test_background_cycle(self):
        dash = DashboardManager(DashboardConfig(update_interval=0.02))
        ticked = threading.Event()
        dash.on("metrics-updated", lambda _: ticked.set())
        dash.initialize(start_cycle=True)
        try:
            self.assertTrue(ticked.wait(timeout=2))
        finally:
            dash.cleanup()
        self.assertEqual(dash.status, "stopped")

    def test_cleanup(self):
        view = RecordingView()
        self.dash.register_view("v", view)
        self.dash.cleanup()
        self.assertTrue(view.cleaned)
        self.assertEqual(self.dash.get_status()["metrics"], [])
        self.assertEqual(self.dash.status, "stopped")


if __name__ == '__main__':
    unittest.main()
