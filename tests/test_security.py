# SPDX-License-Identifier: AGPL-3.0-or-later
# Copyright (C) 2025 red1239109-cmd
import copy
import unittest

from hdr_vault.config import SecurityConfig
from hdr_vault.errors import IntegrityError, NotInitializedError, SecurityError
from hdr_vault.security import StateSecurityManager


def make_manager(secret="unit-test-secret", **kw):
    cfg = SecurityConfig(secret=secret, kdf_iterations=1000, **kw)
    mgr = StateSecurityManager(cfg)
    mgr.initialize()
    return mgr


class TestStateSecurity(unittest.TestCase):
    def setUp(self):
        self.mgr = make_manager()
        self.state = {"id": "agent-7", "memory": ["a", "b"], "score": 0.5}

    def test_secure_roundtrip_encrypted(self):
        secured = self.mgr.secure(self.state)
        self.assertEqual(secured["type"], "secured-state")
        self.assertTrue(secured["security"]["encrypted"])
        self.assertEqual(secured["data"]["algorithm"], "aes-256-gcm")
        self.assertNotIn("memory", secured["data"])

        check = self.mgr.verify(secured)
        self.assertTrue(check["valid"])
        self.assertEqual(check["zoneId"], "default")
        self.assertEqual(self.mgr.unsecure(secured), self.state)

    def test_secure_without_encryption(self):
        secured = self.mgr.secure(self.state, encrypt=False)
        self.assertEqual(secured["data"], self.state)
        self.assertEqual(self.mgr.unsecure(secured), self.state)

    def test_tampering_detected(self):
        secured = self.mgr.secure(self.state, encrypt=False)
        forged = copy.deepcopy(secured)
        forged["data"]["score"] = 1.0

        result = self.mgr.verify(forged)
        self.assertFalse(result["valid"])
        self.assertIn("tampered", result["reason"])
        with self.assertRaises(IntegrityError):
            self.mgr.unsecure(forged)

    def test_verify_unknown_or_malformed(self):
        other = make_manager()
        secured = other.secure(self.state)
        self.assertEqual(self.mgr.verify(secured)["reason"], "State not found in security registry")
        self.assertFalse(self.mgr.verify({"id": "x"})["valid"])
        self.assertFalse(self.mgr.verify("nonsense")["valid"])

        for bad in (
            {"id": ["x"], "data": 1, "security": {}},
            {"id": {"k": 1}, "data": 1, "security": {}},
            {"id": "agent-7", "data": 1, "security": "not-a-dict"},
            {"id": "agent-7", "data": 1, "security": None},
        ):
            result = self.mgr.verify(bad)
            self.assertEqual(result, {"valid": False, "reason": "Malformed secured state"})

    def test_verify_tolerates_bad_timestamp(self):
        secured = self.mgr.secure(self.state)
        secured["security"]["securedAt"] = "yesterday"
        result = self.mgr.verify(secured)
        self.assertTrue(result["valid"])
        self.assertIsNone(result["age"])

    def test_signatures_depend_on_secret(self):
        same = make_manager()
        different = make_manager(secret="another-secret")
        sig = self.mgr.sign({"b": 1, "a": 2})

        self.assertTrue(same.verify_signature({"a": 2, "b": 1}, sig))
        self.assertFalse(different.verify_signature({"a": 2, "b": 1}, sig))
        self.assertFalse(self.mgr.verify_signature({"a": 2, "b": 1}, None))

    def test_decrypt_with_wrong_context(self):
        token = self.mgr.encrypt({"k": "v"}, associated="slot-1")
        self.assertEqual(self.mgr.decrypt(token, associated="slot-1"), {"k": "v"})
        with self.assertRaises(IntegrityError):
            self.mgr.decrypt(token, associated="slot-2")
        with self.assertRaises(SecurityError):
            self.mgr.decrypt({"algorithm": "aes-256-gcm"})

    def test_zones(self):
        zone = self.mgr.create_zone("vault-a", level="high")
        self.assertEqual(zone.level, "high")
        with self.assertRaises(SecurityError):
            self.mgr.create_zone("vault-a")

        secured = self.mgr.secure(self.state, zone_id="vault-a")
        self.assertEqual(secured["security"]["zoneId"], "vault-a")

        self.mgr.remove_zone("vault-a")
        with self.assertRaises(SecurityError):
            self.mgr.remove_zone("vault-a")
        with self.assertRaises(SecurityError):
            self.mgr.remove_zone("default")

    def test_access_log_bounded_and_filtered(self):
        mgr = make_manager(access_log_size=3)
        secured = mgr.secure(self.state)
        mgr.verify(secured)
        mgr.unsecure(secured)
        mgr.verify(secured)

        log = mgr.get_access_log()
        self.assertEqual(len(log), 3)
        self.assertEqual([e["type"] for e in log], ["verify", "unsecure", "verify"])
        self.assertEqual(len(mgr.get_access_log(type="verify")), 2)
        self.assertEqual(mgr.get_access_log(state_id="nobody"), [])

    def test_statistics(self):
        self.mgr.secure(self.state)
        stats = self.mgr.get_statistics()
        self.assertEqual(stats["securedStates"], 1)
        self.assertEqual(stats["securityZones"], 1)
        self.assertEqual(stats["zones"][0]["id"], "default")

    def test_requires_initialize(self):
        mgr = StateSecurityManager(SecurityConfig(secret="x", kdf_iterations=1000))
        with self.assertRaises(NotInitializedError):
            mgr.secure(self.state)

    def test_ephemeral_secret(self):
        a = make_manager(secret=None)
        b = make_manager(secret=None)
        self.assertNotEqual(a.sign({"v": 1}), b.sign({"v": 1}))


if __name__ == '__main__':
    unittest.main()
