# SPDX-License-Identifier: AGPL-3.0-or-later
# Copyright (C) 2025 red1239109-cmd
import io
import json
import os
import shutil
import tempfile
import unittest
from contextlib import redirect_stderr, redirect_stdout
from unittest import mock

from hdr_vault.cli import main
from hdr_vault.config import PersistenceConfig
from hdr_vault.persistence import StatePersistenceManager


class TestCli(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.mkdtemp(prefix="hdr_cli_")
        self.storage = os.path.join(self.tmp, "states")
        self.config = os.path.join(self.tmp, "vault.yaml")
        with open(self.config, "w", encoding="utf-8") as f:
            f.write(f"persistence:\n  storage_path: {self.storage}\n")

        store = StatePersistenceManager(PersistenceConfig(storage_path=self.storage))
        store.initialize()
        store.save({"id": "alpha", "v": 1})
        store.shutdown()

        patcher = mock.patch.dict(os.environ, {}, clear=True)
        patcher.start()
        self.addCleanup(patcher.stop)

    def tearDown(self):
        shutil.rmtree(self.tmp, ignore_errors=True)

    def run_cli(self, *argv):
        out, err = io.StringIO(), io.StringIO()
        with redirect_stdout(out), redirect_stderr(err):
            code = main(["--config", self.config, *argv])
        return code, out.getvalue(), err.getvalue()

    def test_list_and_stats(self):
        code, out, _ = self.run_cli("list")
        self.assertEqual(code, 0)
        self.assertIn("alpha", out)

        code, out, _ = self.run_cli("stats")
        self.assertEqual(json.loads(out)["stateCount"], 1)

    def test_export_then_import(self):
        exported = os.path.join(self.tmp, "alpha.json")
        code, _, _ = self.run_cli("export", "alpha", "--format", "binary", "-o", exported)
        self.assertEqual(code, 0)

        self.assertEqual(self.run_cli("delete", "alpha")[0], 0)
        code, out, _ = self.run_cli("import", exported)
        self.assertEqual(code, 0)
        self.assertEqual(json.loads(out)["stateId"], "alpha")

    def test_missing_state(self):
        self.assertEqual(self.run_cli("delete", "ghost")[0], 1)
        self.assertEqual(self.run_cli("export", "ghost")[0], 2)


if __name__ == '__main__':
    unittest.main()
