# SPDX-License-Identifier: AGPL-3.0-or-later
# Copyright (C) 2025 red1239109-cmd
# ==============================================================================
# File: capsule.py
# Signed, layer-encrypted snapshots of an agent state.
#
# Capsule layout:
#   {
#     "header":    {"magic": "NHDR", "id", "version", "createdAt", "layerCount", ...},
#     "layers":    [{"index", "name", "payload": <AES-GCM token>}],
#     "integrity": <HMAC-SHA512 over canonical {"header", "layers"}>
#   }
# Each layer is encrypted with "layer:<index>:<name>" as associated data, so a
# layer moved to another slot fails to decrypt.
# ==============================================================================
from __future__ import annotations

import copy
import logging
import secrets
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple

from . import __version__, now_ts
from .errors import CapsuleError, IntegrityError, SecurityError
from .security import StateSecurityManager

log = logging.getLogger("hdr_vault.capsule")

MAGIC = "NHDR"


@dataclass(frozen=True)
class LayerSpec:
    name: str
    path: Tuple[str, ...]
    empty: Callable[[], Any]


# fixed order; the index of a layer is its position here
LAYERS: Tuple[LayerSpec, ...] = (
    LayerSpec("knowledge", ("model", "weights"), dict),
    LayerSpec("timeline", ("context", "conversations"), list),
    LayerSpec("context", ("context",), dict),
    LayerSpec("reasoning", ("reasoning",), dict),
    LayerSpec("emotions", ("emotions",), dict),
)


def _dig(d: Any, path: Tuple[str, ...]) -> Any:
    for key in path:
        if not isinstance(d, dict) or key not in d:
            return None
        d = d[key]
    return d


def _check_container(target: Dict[str, Any], path: Tuple[str, ...]) -> None:
    node: Any = target
    for depth, key in enumerate(path):
        node = node.get(key)
        if node is None:
            return
        if not isinstance(node, dict):
            where = ".".join(path[: depth + 1])
            raise CapsuleError(f"Restore target field '{where}' must be a JSON object")


def merge_values(a: Any, b: Any) -> Any:
    """Recursive merge: mappings key by key, lists concatenated without
    duplicates (first occurrence wins), anything else taken from ``b``."""
    if isinstance(a, dict) and isinstance(b, dict):
        out = dict(a)
        for k, v in b.items():
            out[k] = merge_values(a[k], v) if k in a else copy.deepcopy(v)
        return out
    if isinstance(a, list) and isinstance(b, list):
        out: List[Any] = []
        for item in a + b:
            if item not in out:
                out.append(copy.deepcopy(item))
        return out
    return copy.deepcopy(b)


class StateCapsuleEngine:
    def __init__(self, security: StateSecurityManager):
        self.security = security

    # ------------------------------------------------------------------
    # extraction
    # ------------------------------------------------------------------
    @staticmethod
    def extract_layers(ai_state: Dict[str, Any]) -> Dict[str, Any]:
        if not isinstance(ai_state, dict):
            raise CapsuleError("AI state must be a JSON object")

        layers: Dict[str, Any] = {}
        for spec in LAYERS:
            value = _dig(ai_state, spec.path)
            if spec.name == "context" and value is not None:
                if not isinstance(value, dict):
                    raise CapsuleError("AI state field 'context' must be a JSON object")
                # conversations live in their own layer
                value = {k: v for k, v in value.items() if k != "conversations"}
            if value is None:
                value = spec.empty()
            layers[spec.name] = copy.deepcopy(value)
        return layers

    # ------------------------------------------------------------------
    # create / decode / restore / merge
    # ------------------------------------------------------------------
    def create(self, ai_state: Dict[str, Any], capsule_id: Optional[str] = None) -> Dict[str, Any]:
        layers = self.extract_layers(ai_state)
        capsule = self._seal(layers, capsule_id=capsule_id)
        log.info(f"Capsule {capsule['header']['id']} created ({len(LAYERS)} layers)")
        return capsule

    def decode(self, capsule: Dict[str, Any]) -> Dict[str, Any]:
        self.validate(capsule)
        decoded: Dict[str, Any] = {}
        for layer in capsule["layers"]:
            index, name = int(layer["index"]), str(layer["name"])
            try:
                decoded[name] = self.security.decrypt(layer["payload"], associated=f"layer:{index}:{name}")
            except SecurityError as e:
                raise IntegrityError(f"Layer {index} ({name}) could not be decrypted: {e}") from e
        return decoded

    def restore(self, capsule: Dict[str, Any], target: Dict[str, Any]) -> Dict[str, Any]:
        if not isinstance(target, dict):
            raise CapsuleError("Restore target must be a JSON object")
        layers = self.decode(capsule)
        present = [spec for spec in LAYERS if layers.get(spec.name) not in (None, {}, [])]

        # check every container first so a bad target is left untouched
        for spec in present:
            if spec.name == "context" and not isinstance(layers[spec.name], dict):
                raise CapsuleError("Capsule context layer is not a JSON object")
            container = spec.path if spec.name == "context" else spec.path[:-1]
            _check_container(target, container)

        for spec in present:
            data = layers[spec.name]
            if spec.name == "context":
                ctx = target.setdefault("context", {})
                ctx.update(copy.deepcopy(data))
                continue
            node = target
            for key in spec.path[:-1]:
                node = node.setdefault(key, {})
            node[spec.path[-1]] = copy.deepcopy(data)

        log.info(f"Capsule {capsule['header'].get('id')} restored")
        return target

    def merge(self, capsule_a: Dict[str, Any], capsule_b: Dict[str, Any],
              capsule_id: Optional[str] = None) -> Dict[str, Any]:
        layers_a = self.decode(capsule_a)
        layers_b = self.decode(capsule_b)

        merged = {
            spec.name: merge_values(layers_a.get(spec.name, spec.empty()), layers_b.get(spec.name, spec.empty()))
            for spec in LAYERS
        }
        sources = [capsule_a["header"].get("id"), capsule_b["header"].get("id")]
        capsule = self._seal(merged, capsule_id=capsule_id, extra_header={"mergedFrom": sources})
        log.info(f"Capsules {sources[0]} + {sources[1]} merged into {capsule['header']['id']}")
        return capsule

    # ------------------------------------------------------------------
    # integrity
    # ------------------------------------------------------------------
    def validate(self, capsule: Any) -> None:
        if not isinstance(capsule, dict):
            raise CapsuleError("Capsule must be a JSON object")
        header = capsule.get("header")
        layers = capsule.get("layers")
        if not isinstance(header, dict) or header.get("magic") != MAGIC:
            raise CapsuleError("Not a capsule (bad magic)")
        if not isinstance(layers, list) or header.get("layerCount") != len(layers):
            raise CapsuleError("Capsule layer count mismatch")
        if not self.security.verify_signature({"header": header, "layers": layers}, capsule.get("integrity")):
            raise IntegrityError("Capsule has been tampered with")

    def _seal(self, layers: Dict[str, Any], capsule_id: Optional[str] = None,
              extra_header: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        header = {
            "magic": MAGIC,
            "id": capsule_id or f"cap_{secrets.token_hex(8)}",
            "version": __version__,
            "createdAt": now_ts(),
            "layerCount": len(LAYERS),
        }
        header.update(extra_header or {})

        sealed = [
            {
                "index": i,
                "name": spec.name,
                "payload": self.security.encrypt(layers.get(spec.name, spec.empty()), associated=f"layer:{i}:{spec.name}"),
            }
            for i, spec in enumerate(LAYERS)
        ]
        integrity = self.security.sign({"header": header, "layers": sealed})
        return {"header": header, "layers": sealed, "integrity": integrity}
