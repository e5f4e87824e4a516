# SPDX-License-Identifier: AGPL-3.0-or-later
# Copyright (C) 2025 red1239109-cmd
import threading
import unittest

from hdr_vault.acceleration import AccelerationController
from hdr_vault.config import AccelerationConfig
from hdr_vault.errors import AccelerationError
from hdr_vault.metrics import VaultMetrics


def boom():
    raise ValueError("task exploded")


class TestAcceleration(unittest.TestCase):
    def setUp(self):
        self.metrics = VaultMetrics()
        self.ctl = AccelerationController(AccelerationConfig(workers=2), metrics=self.metrics)

    def tearDown(self):
        self.ctl.stop(wait=True)

    def test_inactive_until_started(self):
        self.assertFalse(self.ctl.active)
        self.assertEqual(self.ctl.get_status(), {"status": "inactive"})
        with self.assertRaises(AccelerationError):
            self.ctl.submit("early", lambda: 1)

    def test_runs_tasks(self):
        started = self.ctl.start()
        self.assertEqual(started, {"status": "started", "workers": 2, "plannedTasks": 0})

        ids = [self.ctl.submit(f"square-{i}", pow, i, 2) for i in range(5)]
        self.ctl.submit("broken", boom)
        self.assertTrue(all(i.startswith("task_") for i in ids))
        self.assertTrue(self.ctl.wait(timeout=5))

        status = self.ctl.get_status()
        self.assertEqual(status["status"], "active")
        self.assertEqual(status["tasksCompleted"], 6)
        self.assertEqual(status["tasksRemaining"], 0)
        self.assertEqual(status["totalTasks"], 6)
        self.assertEqual(status["progress"], 1.0)
        self.assertEqual(status["metrics"]["succeeded"], 5)
        self.assertEqual(status["metrics"]["failed"], 1)

        self.assertEqual(self.metrics.registry.get_sample_value("hdr_vault_tasks_total", {"outcome": "ok"}), 5.0)
        self.assertEqual(self.metrics.registry.get_sample_value("hdr_vault_tasks_total", {"outcome": "error"}), 1.0)

    def test_recent_tasks(self):
        self.ctl.start()
        self.ctl.submit("broken", boom)
        self.ctl.wait(timeout=5)

        recent = self.ctl.get_completed(5)
        self.assertEqual(len(recent), 1)
        self.assertFalse(recent[0]["ok"])
        self.assertEqual(recent[0]["error"], "task exploded")
        self.assertNotIn("result", recent[0])
        self.assertEqual(self.ctl.get_completed(0), [])
        self.assertEqual(self.ctl.get_completed(-3), [])
        self.assertEqual(len(self.ctl.get_completed(None)), 1)

    def test_planned_tasks(self):
        out = self.ctl.start([("one", lambda: 1), ("two", lambda: 2)])
        self.assertEqual(out["plannedTasks"], 2)
        self.ctl.wait(timeout=5)
        self.assertEqual(self.ctl.get_status()["tasksCompleted"], 2)

    def test_start_twice_returns_status(self):
        self.ctl.start()
        again = self.ctl.start()
        self.assertEqual(again["status"], "active")

    def test_wait_timeout(self):
        gate = threading.Event()
        self.ctl.start()
        self.ctl.submit("blocked", gate.wait, 5)
        self.assertFalse(self.ctl.wait(timeout=0.05))
        self.assertEqual(self.ctl.get_status()["tasksRemaining"], 1)
        gate.set()
        self.assertTrue(self.ctl.wait(timeout=5))

    def test_stop(self):
        self.ctl.start()
        self.ctl.submit("one", lambda: 1)
        stopped = self.ctl.stop(wait=True)
        self.assertEqual(stopped["status"], "stopped")
        self.assertEqual(stopped["tasksCompleted"], 1)
        self.assertEqual(self.ctl.stop(), {"status": "inactive"})
        self.assertEqual(self.ctl.get_status(), {"status": "inactive"})


if __name__ == '__main__':
    unittest.main()
