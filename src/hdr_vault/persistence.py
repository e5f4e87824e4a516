# SPDX-License-Identifier: AGPL-3.0-or-later
# Copyright (C) 2025 red1239109-cmd
# ==============================================================================
# File: persistence.py
# File-per-state JSON storage.
#
# Layout on disk:
#   <storage_path>/<state_id>.json   state body (plain or base64 envelope)
#   <storage_path>/index.json        manifest [{id, path, size, compressed, savedAt}]
#
# When the total size goes over max_storage_size the oldest states are evicted
# until the store is back under max_storage_size * cleanup_target_ratio.
# ==============================================================================
from __future__ import annotations

import base64
import json
import logging
import os
import re
import threading
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from . import now_ts
from .config import PersistenceConfig
from .errors import (
    NotInitializedError,
    PersistenceError,
    StateNotFoundError,
    UnsupportedFormatError,
)
from .events import EventEmitter

log = logging.getLogger("hdr_vault.persistence")

INDEX_FILE = "index.json"
EXPORT_VERSION = "1.0.0"
_STATE_ID_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]{0,127}$")


def fsync_file(f) -> None:
    f.flush()
    os.fsync(f.fileno())


def atomic_write_text(path: str, text: str) -> None:
    tmp = path + ".tmp"
    with open(tmp, "wb") as f:
        f.write(text.encode("utf-8"))
        fsync_file(f)
    os.replace(tmp, path)


def compact_json(obj: Any) -> str:
    return json.dumps(obj, ensure_ascii=False, separators=(",", ":"))


def compress_state(state: Dict[str, Any]) -> Dict[str, Any]:
    raw = compact_json(state)
    return {
        "compressed": True,
        "data": base64.b64encode(raw.encode("utf-8")).decode("ascii"),
        "originalSize": len(raw),
    }


def decompress_state(envelope: Dict[str, Any]) -> Dict[str, Any]:
    if not isinstance(envelope, dict) or not envelope.get("compressed"):
        return envelope
    raw = base64.b64decode(envelope["data"]).decode("utf-8")
    return json.loads(raw)


@dataclass
class IndexEntry:
    id: str
    path: str
    size: int
    compressed: bool
    saved_at: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "path": self.path,
            "size": self.size,
            "compressed": self.compressed,
            "savedAt": self.saved_at,
        }

    @staticmethod
    def from_dict(d: Dict[str, Any]) -> "IndexEntry":
        return IndexEntry(
            id=str(d["id"]),
            path=str(d["path"]),
            size=int(d.get("size", 0)),
            compressed=bool(d.get("compressed", False)),
            saved_at=float(d.get("savedAt", 0.0)),
        )


class StatePersistenceManager(EventEmitter):
    def __init__(self, config: Optional[PersistenceConfig] = None):
        super().__init__()
        self.config = config or PersistenceConfig()
        self.state_index: Dict[str, IndexEntry] = {}
        self.storage_size = 0
        self.initialized = False
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # lifecycle
    # ------------------------------------------------------------------
    def initialize(self) -> None:
        try:
            os.makedirs(self.config.storage_path, exist_ok=True)
            with self._lock:
                self._load_state_index()
                self._calculate_storage_size()
                self.initialized = True
        except OSError as e:
            raise PersistenceError(f"Persistence manager initialization failed: {e}") from e

        log.info(
            f"Persistence ready at {self.config.storage_path} "
            f"({len(self.state_index)} states, {self.storage_size} bytes)"
        )
        self.emit("initialized", {"stateCount": len(self.state_index)})

    def shutdown(self) -> None:
        with self._lock:
            if self.initialized:
                self._save_state_index()
            self.state_index.clear()
            self.storage_size = 0
            self.initialized = False
        self.emit("shutdown", {})

    # ------------------------------------------------------------------
    # CRUD
    # ------------------------------------------------------------------
    def save(self, state: Dict[str, Any]) -> Dict[str, Any]:
        self._ensure_initialized()
        state_id = self._state_id_of(state, "save")

        try:
            with self._lock:
                state_path = self._get_state_path(state_id)
                compressed = bool(self.config.compression_enabled)
                data_to_save = compress_state(state) if compressed else state

                atomic_write_text(state_path, json.dumps(data_to_save, indent=2, ensure_ascii=False))
                size = os.stat(state_path).st_size

                previous = self.state_index.pop(state_id, None)
                if previous is not None:
                    self.storage_size -= previous.size

                self.state_index[state_id] = IndexEntry(
                    id=state_id,
                    path=state_path,
                    size=size,
                    compressed=compressed,
                    saved_at=now_ts(),
                )
                self.storage_size += size
                self._save_state_index()

                if self.config.auto_cleanup and self.storage_size > self.config.max_storage_size:
                    self.cleanup()
        except (OSError, TypeError, ValueError) as e:
            raise PersistenceError(f"State save failed: {e}") from e

        self.emit("state-saved", {"stateId": state_id, "size": size})
        return {"stateId": state_id, "path": state_path, "size": size, "compressed": compressed}

    def load(self, state_id: str) -> Dict[str, Any]:
        self._ensure_initialized()

        with self._lock:
            entry = self.state_index.get(state_id)
            if entry is None:
                raise StateNotFoundError(state_id)
            try:
                with open(entry.path, "r", encoding="utf-8") as f:
                    state = json.load(f)
                if entry.compressed:
                    state = decompress_state(state)
            except (OSError, ValueError, KeyError) as e:
                raise PersistenceError(f"State load failed: {e}") from e

        self.emit("state-loaded", {"stateId": state_id})
        return state

    def delete(self, state_id: str) -> bool:
        with self._lock:
            entry = self.state_index.get(state_id)
            if entry is None:
                return False
            try:
                if os.path.exists(entry.path):
                    os.remove(entry.path)
            except OSError as e:
                raise PersistenceError(f"State deletion failed: {e}") from e

            self.storage_size -= entry.size
            del self.state_index[state_id]
            if self.initialized:
                self._save_state_index()

        self.emit("state-deleted", {"stateId": state_id})
        return True

    def exists(self, state_id: str) -> bool:
        self._ensure_initialized()
        with self._lock:
            return state_id in self.state_index

    # ------------------------------------------------------------------
    # export / import
    # ------------------------------------------------------------------
    def export(self, state: Dict[str, Any], format: str = "json",
               compress: bool = True, include_metadata: bool = True) -> Dict[str, Any]:
        if format == "json":
            exported = self._export_json(state, compress, include_metadata)
        elif format == "binary":
            exported = self._export_binary(state, include_metadata)
        else:
            raise UnsupportedFormatError(format, "export")

        self.emit("state-exported", {"stateId": state.get("id"), "format": format})
        return exported

    def import_state(self, data: Dict[str, Any]) -> Dict[str, Any]:
        fmt = data.get("format") if isinstance(data, dict) else None
        try:
            if fmt == "json":
                state = decompress_state(data["data"])
            elif fmt == "binary":
                state = json.loads(base64.b64decode(data["data"]).decode("utf-8"))
            else:
                raise UnsupportedFormatError(str(fmt), "import")
        except (KeyError, ValueError) as e:
            raise PersistenceError(f"State import failed: {e}") from e

        self.emit("state-imported", {"stateId": state.get("id") if isinstance(state, dict) else None})
        return state

    def _export_json(self, state: Dict[str, Any], compress: bool, include_metadata: bool) -> Dict[str, Any]:
        exported: Dict[str, Any] = {
            "format": "json",
            "version": EXPORT_VERSION,
            "data": compress_state(state) if compress else state,
        }
        if include_metadata:
            exported["metadata"] = {"exportedAt": now_ts(), "compressed": bool(compress)}
        return exported

    def _export_binary(self, state: Dict[str, Any], include_metadata: bool) -> Dict[str, Any]:
        raw = compact_json(state)
        exported: Dict[str, Any] = {
            "format": "binary",
            "version": EXPORT_VERSION,
            "data": base64.b64encode(raw.encode("utf-8")).decode("ascii"),
        }
        if include_metadata:
            exported["metadata"] = {"exportedAt": now_ts(), "originalSize": len(raw)}
        return exported

    # ------------------------------------------------------------------
    # queries
    # ------------------------------------------------------------------
    def list_states(self) -> List[Dict[str, Any]]:
        self._ensure_initialized()
        with self._lock:
            return [
                {"id": e.id, "size": e.size, "compressed": e.compressed, "savedAt": e.saved_at}
                for e in self.state_index.values()
            ]

    def get_statistics(self) -> Dict[str, Any]:
        self._ensure_initialized()
        with self._lock:
            max_size = self.config.max_storage_size
            return {
                "stateCount": len(self.state_index),
                "totalSize": self.storage_size,
                "maxSize": max_size,
                "utilizationPercent": (self.storage_size / max_size) * 100 if max_size else 0.0,
                "compressionEnabled": bool(self.config.compression_enabled),
            }

    # ------------------------------------------------------------------
    # eviction
    # ------------------------------------------------------------------
    def cleanup(self) -> Dict[str, Any]:
        self._ensure_initialized()
        target = self.config.max_storage_size * self.config.cleanup_target_ratio
        deleted: List[str] = []

        with self._lock:
            # sorted() is stable, so ties keep index (insertion) order
            entries = sorted(self.state_index.values(), key=lambda e: e.saved_at)
            for entry in entries:
                if self.storage_size <= target:
                    break
                if self.delete(entry.id):
                    deleted.append(entry.id)
            new_size = self.storage_size

        if deleted:
            log.warning(f"Evicted {len(deleted)} state(s); storage now {new_size} bytes")
        result = {"deletedCount": len(deleted), "deleted": deleted, "newSize": new_size}
        self.emit("cleanup-complete", result)
        return result

    # ------------------------------------------------------------------
    # internals
    # ------------------------------------------------------------------
    def _ensure_initialized(self) -> None:
        if not self.initialized:
            raise NotInitializedError("Persistence manager")

    def _state_id_of(self, state: Any, action: str) -> str:
        if not isinstance(state, dict):
            raise PersistenceError(f"State {action} failed: state must be a mapping")
        state_id = state.get("id")
        if not isinstance(state_id, str) or not _STATE_ID_RE.match(state_id):
            raise PersistenceError(f"State {action} failed: invalid state id {state_id!r}")
        if state_id.lower() in ("index", "index.json"):
            raise PersistenceError(f"State {action} failed: reserved state id {state_id!r}")
        return state_id

    def _get_state_path(self, state_id: str) -> str:
        return os.path.join(self.config.storage_path, f"{state_id}.json")

    def _index_path(self) -> str:
        return os.path.join(self.config.storage_path, INDEX_FILE)

    def _load_state_index(self) -> None:
        self.state_index = {}
        path = self._index_path()
        if not os.path.exists(path):
            return
        try:
            with open(path, "r", encoding="utf-8") as f:
                raw = json.load(f)
            for item in raw:
                entry = IndexEntry.from_dict(item)
                if not _STATE_ID_RE.match(entry.id) or entry.id.lower() in ("index", "index.json"):
                    log.warning(f"Skipping index entry with invalid id {entry.id!r}")
                    continue
                # stored paths are ignored; state files always live under storage_path
                entry.path = self._get_state_path(entry.id)
                self.state_index[entry.id] = entry
        except (OSError, ValueError, KeyError, TypeError) as e:
            # the index is rebuilt on the next save
            log.warning(f"Ignoring unreadable state index {path}: {e}")
            self.state_index = {}

    def _save_state_index(self) -> None:
        index = [e.to_dict() for e in self.state_index.values()]
        atomic_write_text(self._index_path(), json.dumps(index, indent=2, ensure_ascii=False))

    def _calculate_storage_size(self) -> None:
        self.storage_size = sum(e.size for e in self.state_index.values())
