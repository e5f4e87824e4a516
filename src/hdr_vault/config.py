# SPDX-License-Identifier: AGPL-3.0-or-later
# Copyright (C) 2025 red1239109-cmd
# src/hdr_vault/config.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional
from pathlib import Path
import os

import yaml


# -----------------------------
# helpers
# -----------------------------
def _deep_update(base: Dict[str, Any], update: Dict[str, Any]) -> Dict[str, Any]:
    for k, v in (update or {}).items():
        if isinstance(base.get(k), dict) and isinstance(v, dict):
            base[k] = _deep_update(base[k], v)
        else:
            base[k] = v
    return base


def _read_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        return {}
    with path.open("r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"YAML root must be a mapping/dict: {path}")
    return data


def _as_path(p: Optional[str]) -> Optional[Path]:
    if p is None:
        return None
    return Path(p).expanduser().resolve()


def _env_bool(name: str, default: bool = False) -> bool:
    v = os.getenv(name)
    if v is None:
        return default
    return v.strip().lower() in ("1", "true", "yes", "y", "on")


# -----------------------------
# dataclasses (single source of truth)
# -----------------------------
@dataclass
class PersistenceConfig:
    storage_path: str = "./data/states"
    compression_enabled: bool = True
    max_storage_size: int = 1024 * 1024 * 1024  # 1GB
    auto_cleanup: bool = True
    cleanup_target_ratio: float = 0.8

    @staticmethod
    def from_dict(d: Dict[str, Any]) -> "PersistenceConfig":
        d = d or {}
        return PersistenceConfig(
            storage_path=str(d.get("storage_path", "./data/states")),
            compression_enabled=bool(d.get("compression_enabled", True)),
            max_storage_size=int(d.get("max_storage_size", 1024 * 1024 * 1024)),
            auto_cleanup=bool(d.get("auto_cleanup", True)),
            cleanup_target_ratio=float(d.get("cleanup_target_ratio", 0.8)),
        )


@dataclass
class SecurityConfig:
    secret: Optional[str] = None
    salt: str = "hdr-vault/v1"
    kdf_iterations: int = 200_000
    security_level: str = "maximum"
    encryption_enabled: bool = True
    access_log_size: int = 10_000

    @staticmethod
    def from_dict(d: Dict[str, Any]) -> "SecurityConfig":
        d = d or {}
        return SecurityConfig(
            secret=d.get("secret"),
            salt=str(d.get("salt", "hdr-vault/v1")),
            kdf_iterations=int(d.get("kdf_iterations", 200_000)),
            security_level=str(d.get("security_level", "maximum")),
            encryption_enabled=bool(d.get("encryption_enabled", True)),
            access_log_size=int(d.get("access_log_size", 10_000)),
        )


@dataclass
class DashboardConfig:
    update_interval: float = 1.0  # seconds
    max_history: int = 1000
    max_component_history: int = 100

    @staticmethod
    def from_dict(d: Dict[str, Any]) -> "DashboardConfig":
        d = d or {}
        return DashboardConfig(
            update_interval=float(d.get("update_interval", 1.0)),
            max_history=int(d.get("max_history", 1000)),
            max_component_history=int(d.get("max_component_history", 100)),
        )


@dataclass
class AccelerationConfig:
    workers: int = 4
    history_size: int = 500

    @staticmethod
    def from_dict(d: Dict[str, Any]) -> "AccelerationConfig":
        d = d or {}
        return AccelerationConfig(
            workers=int(d.get("workers", 4)),
            history_size=int(d.get("history_size", 500)),
        )


@dataclass
class ServerConfig:
    host: str = "0.0.0.0"
    port: int = 8000
    log_level: str = "info"

    @staticmethod
    def from_dict(d: Dict[str, Any]) -> "ServerConfig":
        d = d or {}
        return ServerConfig(
            host=str(d.get("host", "0.0.0.0")),
            port=int(d.get("port", 8000)),
            log_level=str(d.get("log_level", "info")).lower(),
        )


@dataclass
class VaultConfig:
    persistence: PersistenceConfig = field(default_factory=PersistenceConfig)
    security: SecurityConfig = field(default_factory=SecurityConfig)
    dashboard: DashboardConfig = field(default_factory=DashboardConfig)
    acceleration: AccelerationConfig = field(default_factory=AccelerationConfig)
    server: ServerConfig = field(default_factory=ServerConfig)

    # merged source dict, kept for debugging
    raw: Dict[str, Any] = field(default_factory=dict)

    def post_init_validate(self) -> None:
        if self.persistence.max_storage_size <= 0:
            raise ValueError("persistence.max_storage_size must be > 0")
        if not (0.0 < self.persistence.cleanup_target_ratio <= 1.0):
            raise ValueError("persistence.cleanup_target_ratio must be in (0, 1]")
        if self.security.kdf_iterations < 1000:
            raise ValueError("security.kdf_iterations must be >= 1000")
        if self.security.access_log_size < 1:
            raise ValueError("security.access_log_size must be >= 1")
        if self.dashboard.update_interval <= 0:
            raise ValueError("dashboard.update_interval must be > 0")
        if self.dashboard.max_history < 1 or self.dashboard.max_component_history < 1:
            raise ValueError("dashboard history limits must be >= 1")
        if self.acceleration.workers < 1:
            raise ValueError("acceleration.workers must be >= 1")
        if not (0 < self.server.port < 65536):
            raise ValueError("server.port must be in 1..65535")

    @staticmethod
    def from_dict(merged: Dict[str, Any]) -> "VaultConfig":
        cfg = VaultConfig(
            persistence=PersistenceConfig.from_dict(merged.get("persistence", {}) or {}),
            security=SecurityConfig.from_dict(merged.get("security", {}) or {}),
            dashboard=DashboardConfig.from_dict(merged.get("dashboard", {}) or {}),
            acceleration=AccelerationConfig.from_dict(merged.get("acceleration", {}) or {}),
            server=ServerConfig.from_dict(merged.get("server", {}) or {}),
            raw=merged,
        )
        cfg.post_init_validate()
        return cfg


# -----------------------------
# loader: hdr_vault.yaml + env overrides
# -----------------------------
DEFAULT_CONFIG_PATH = "config/hdr_vault.yaml"


def _apply_env_overrides(merged: Dict[str, Any]) -> None:
    if os.getenv("HDR_VAULT_STORAGE_PATH"):
        merged.setdefault("persistence", {})["storage_path"] = os.environ["HDR_VAULT_STORAGE_PATH"]
    if os.getenv("HDR_VAULT_MAX_STORAGE"):
        merged.setdefault("persistence", {})["max_storage_size"] = int(os.environ["HDR_VAULT_MAX_STORAGE"])
    if os.getenv("HDR_VAULT_COMPRESSION") is not None:
        merged.setdefault("persistence", {})["compression_enabled"] = _env_bool("HDR_VAULT_COMPRESSION", True)

    if os.getenv("HDR_VAULT_SECRET"):
        merged.setdefault("security", {})["secret"] = os.environ["HDR_VAULT_SECRET"]

    if os.getenv("HDR_VAULT_WORKERS"):
        merged.setdefault("acceleration", {})["workers"] = int(os.environ["HDR_VAULT_WORKERS"])

    if os.getenv("HDR_VAULT_HOST"):
        merged.setdefault("server", {})["host"] = os.environ["HDR_VAULT_HOST"]
    if os.getenv("HDR_VAULT_PORT"):
        merged.setdefault("server", {})["port"] = int(os.environ["HDR_VAULT_PORT"])
    if os.getenv("HDR_VAULT_LOG_LEVEL"):
        merged.setdefault("server", {})["log_level"] = os.environ["HDR_VAULT_LOG_LEVEL"]


def load_config(config_path: Optional[str] = None, overrides: Optional[Dict[str, Any]] = None) -> VaultConfig:
    """
    Load configuration.
    Priority: overrides > environment > YAML file > defaults
    """
    if config_path is None:
        config_path = os.getenv("HDR_VAULT_CONFIG", DEFAULT_CONFIG_PATH)

    merged: Dict[str, Any] = {}
    merged = _deep_update(merged, _read_yaml(_as_path(config_path)))
    _apply_env_overrides(merged)
    merged = _deep_update(merged, overrides or {})

    return VaultConfig.from_dict(merged)
