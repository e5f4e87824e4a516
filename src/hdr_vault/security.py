# SPDX-License-Identifier: AGPL-3.0-or-later
# Copyright (C) 2025 red1239109-cmd
# ==============================================================================
# File: security.py
# AES-256-GCM encryption + HMAC-SHA512 integrity for stored states.
#
# Key schedule: PBKDF2-HMAC-SHA512(secret, salt, iterations) -> 96 bytes
#   [0:32]  AES-256-GCM key
#   [32:96] HMAC-SHA512 key
# A stable secret (HDR_VAULT_SECRET) is required for anything signed in one
# process to verify in another.
# ==============================================================================
from __future__ import annotations

import base64
import hashlib
import hmac
import json
import logging
import os
import secrets
import threading
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from . import now_ts
from .config import SecurityConfig
from .errors import IntegrityError, NotInitializedError, SecurityError
from .events import EventEmitter

log = logging.getLogger("hdr_vault.security")

ALGORITHM = "aes-256-gcm"
DEFAULT_ZONE = "default"


def canonical(d: Any) -> str:
    return json.dumps(d, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str)


def _b64e(b: bytes) -> str:
    return base64.b64encode(b).decode("ascii")


def _b64d(s: str) -> bytes:
    return base64.b64decode(s.encode("ascii"))


def derive_keys(secret: str, salt: bytes, iterations: int):
    kdf = PBKDF2HMAC(algorithm=hashes.SHA512(), length=96, salt=salt, iterations=iterations)
    material = kdf.derive(secret.encode("utf-8"))
    return material[:32], material[32:]


@dataclass
class SecurityZone:
    id: str
    name: str
    level: str
    created_at: float = field(default_factory=now_ts)


class StateSecurityManager(EventEmitter):
    def __init__(self, config: Optional[SecurityConfig] = None):
        super().__init__()
        self.config = config or SecurityConfig()
        self.security_zones: Dict[str, SecurityZone] = {}
        self.secured_states: Dict[str, Dict[str, Any]] = {}
        self.access_log: deque = deque(maxlen=int(self.config.access_log_size))
        self.initialized = False
        self._aead: Optional[AESGCM] = None
        self._mac_key: bytes = b""
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # lifecycle
    # ------------------------------------------------------------------
    def initialize(self) -> None:
        secret = self.config.secret
        if not secret:
            secret = secrets.token_hex(32)
            log.warning(
                "HDR_VAULT_SECRET missing! Using EPHEMERAL secret for this session "
                "(secured states won't verify after restart)."
            )
        enc_key, mac_key = derive_keys(secret, self.config.salt.encode("utf-8"), self.config.kdf_iterations)
        self._aead = AESGCM(enc_key)
        self._mac_key = mac_key

        self._create_security_zone(DEFAULT_ZONE, self.config.security_level)
        self.initialized = True
        self.emit("initialized", {})

    def shutdown(self) -> None:
        with self._lock:
            self.secured_states.clear()
            self.security_zones.clear()
            self.access_log.clear()
            self.initialized = False
        self.emit("shutdown", {})

    # ------------------------------------------------------------------
    # primitives
    # ------------------------------------------------------------------
    def sign(self, payload: Any) -> str:
        self._ensure_initialized()
        return hmac.new(self._mac_key, canonical(payload).encode("utf-8"), hashlib.sha512).hexdigest()

    def verify_signature(self, payload: Any, signature: str) -> bool:
        if not isinstance(signature, str):
            return False
        return hmac.compare_digest(self.sign(payload), signature)

    def encrypt(self, obj: Any, associated: str = "") -> Dict[str, str]:
        self._ensure_initialized()
        nonce = os.urandom(12)
        ct = self._aead.encrypt(nonce, canonical(obj).encode("utf-8"), associated.encode("utf-8"))
        return {"algorithm": ALGORITHM, "nonce": _b64e(nonce), "ciphertext": _b64e(ct)}

    def decrypt(self, token: Dict[str, str], associated: str = "") -> Any:
        self._ensure_initialized()
        try:
            if token.get("algorithm") != ALGORITHM:
                raise SecurityError(f"Unsupported algorithm: {token.get('algorithm')}")
            pt = self._aead.decrypt(_b64d(token["nonce"]), _b64d(token["ciphertext"]), associated.encode("utf-8"))
        except InvalidTag as e:
            raise IntegrityError("Decryption failed - ciphertext or key mismatch") from e
        except (KeyError, ValueError, AttributeError) as e:
            raise SecurityError(f"Malformed encrypted payload: {e}") from e
        return json.loads(pt.decode("utf-8"))

    # ------------------------------------------------------------------
    # secure / verify / unsecure
    # ------------------------------------------------------------------
    def secure(self, state: Dict[str, Any], zone_id: str = DEFAULT_ZONE,
               level: Optional[str] = None, encrypt: Optional[bool] = None) -> Dict[str, Any]:
        self._ensure_initialized()
        level = level or self.config.security_level
        encrypt = self.config.encryption_enabled if encrypt is None else bool(encrypt)

        state_id = str(state.get("id", ""))
        if not state_id:
            raise SecurityError("State security failed: state has no id")

        with self._lock:
            zone = self.security_zones.get(zone_id) or self._create_security_zone(zone_id, level)
            data = self.encrypt(state, associated=state_id) if encrypt else state
            integrity_hash = self.sign({"id": state_id, "data": data})
            secured_at = now_ts()

            meta = {
                "zoneId": zone.id,
                "level": level,
                "encrypted": encrypt,
                "integrityHash": integrity_hash,
                "securedAt": secured_at,
            }
            self.secured_states[state_id] = dict(meta)
            self._log_access({"type": "secure", "stateId": state_id, "level": level})

        self.emit("state-secured", {"stateId": state_id, "level": level, "zoneId": zone.id})
        return {"id": state_id, "type": "secured-state", "data": data, "security": meta}

    def verify(self, secured: Dict[str, Any]) -> Dict[str, Any]:
        try:
            state_id = secured["id"]
            data = secured["data"]
            security = secured["security"]
        except (KeyError, TypeError):
            return {"valid": False, "reason": "Malformed secured state"}
        if not isinstance(state_id, str) or not isinstance(security, dict):
            return {"valid": False, "reason": "Malformed secured state"}

        with self._lock:
            if state_id not in self.secured_states:
                return {"valid": False, "reason": "State not found in security registry"}
            if not self.verify_signature({"id": state_id, "data": data}, security.get("integrityHash")):
                self._log_access({"type": "verify", "stateId": state_id, "result": "tampered"})
                return {"valid": False, "reason": "Integrity hash mismatch - state may be tampered"}
            self._log_access({"type": "verify", "stateId": state_id, "result": "success"})

        try:
            age = now_ts() - float(security.get("securedAt", 0.0))
        except (TypeError, ValueError):
            age = None
        return {
            "valid": True,
            "level": security.get("level"),
            "zoneId": security.get("zoneId"),
            "age": age,
            "encrypted": bool(security.get("encrypted")),
        }

    def unsecure(self, secured: Dict[str, Any]) -> Dict[str, Any]:
        verified = self.verify(secured)
        if not verified["valid"]:
            raise IntegrityError(f"State verification failed: {verified['reason']}")

        state_id = secured["id"]
        state = secured["data"]
        if secured["security"].get("encrypted"):
            state = self.decrypt(state, associated=state_id)

        with self._lock:
            self._log_access({"type": "unsecure", "stateId": state_id})
        self.emit("state-unsecured", {"stateId": state_id})
        return state

    # ------------------------------------------------------------------
    # zones
    # ------------------------------------------------------------------
    def create_zone(self, name: str, level: str = "high") -> SecurityZone:
        self._ensure_initialized()
        with self._lock:
            if name in self.security_zones:
                raise SecurityError(f"Zone '{name}' already exists")
            zone = self._create_security_zone(name, level)
        self.emit("zone-created", {"zoneId": zone.id, "name": name})
        return zone

    def remove_zone(self, zone_id: str) -> None:
        if zone_id == DEFAULT_ZONE:
            raise SecurityError("Cannot remove default security zone")
        with self._lock:
            if self.security_zones.pop(zone_id, None) is None:
                raise SecurityError(f"Zone '{zone_id}' not found")
        self.emit("zone-removed", {"zoneId": zone_id})

    def _create_security_zone(self, zone_id: str, level: str) -> SecurityZone:
        zone = SecurityZone(id=zone_id, name=zone_id, level=level)
        self.security_zones[zone_id] = zone
        return zone

    # ------------------------------------------------------------------
    # reporting
    # ------------------------------------------------------------------
    def get_statistics(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "securedStates": len(self.secured_states),
                "securityZones": len(self.security_zones),
                "accessLogSize": len(self.access_log),
                "zones": [{"id": z.id, "name": z.name, "level": z.level} for z in self.security_zones.values()],
                "recentAccess": list(self.access_log)[-10:],
            }

    def get_access_log(self, state_id: Optional[str] = None, type: Optional[str] = None,
                       since: Optional[float] = None) -> List[Dict[str, Any]]:
        with self._lock:
            entries = list(self.access_log)
        if state_id:
            entries = [e for e in entries if e.get("stateId") == state_id]
        if type:
            entries = [e for e in entries if e.get("type") == type]
        if since is not None:
            entries = [e for e in entries if e.get("timestamp", 0.0) >= since]
        return entries

    def _log_access(self, entry: Dict[str, Any]) -> None:
        entry = {**entry, "timestamp": now_ts()}
        self.access_log.append(entry)
        self.emit("access-logged", entry)

    def _ensure_initialized(self) -> None:
        if not self.initialized:
            raise NotInitializedError("Security manager")
