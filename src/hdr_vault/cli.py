# SPDX-License-Identifier: AGPL-3.0-or-later
# Copyright (C) 2025 red1239109-cmd
from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import List, Optional

from . import __version__, fmt_ts
from .config import load_config
from .errors import VaultError
from .persistence import StatePersistenceManager

log = logging.getLogger("hdr_vault.cli")

LOG_FORMAT = "%(asctime)s | %(name)s | %(levelname)s | %(message)s"


def _setup_logging(level: str) -> None:
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format=LOG_FORMAT)


def _store(cfg) -> StatePersistenceManager:
    store = StatePersistenceManager(cfg.persistence)
    store.initialize()
    return store


def cmd_serve(args, cfg) -> int:
    import uvicorn

    from .api import create_app
    from .app import VaultApplication

    host = args.host or cfg.server.host
    port = args.port or cfg.server.port
    app = create_app(VaultApplication(cfg))
    print(f"\n🛡️ Starting HDR Vault {__version__}...")
    print(f"👉 Swagger UI: http://{host}:{port}/docs")
    print(f"👉 Metrics:    http://{host}:{port}/metrics")
    print(f"👉 Health:     http://{host}:{port}/health")
    uvicorn.run(app, host=host, port=port, log_level=cfg.server.log_level)
    return 0


def cmd_list(args, cfg) -> int:
    store = _store(cfg)
    states = sorted(store.list_states(), key=lambda s: s["savedAt"])
    if not states:
        print("(no states)")
    for s in states:
        flag = "z" if s["compressed"] else "-"
        print(f"{s['id']:<40} {flag} {s['size']:>10} B  {fmt_ts(s['savedAt'])}")
    return 0


def cmd_stats(args, cfg) -> int:
    print(json.dumps(_store(cfg).get_statistics(), indent=2))
    return 0


def cmd_export(args, cfg) -> int:
    store = _store(cfg)
    exported = store.export(store.load(args.state_id), format=args.format, compress=not args.no_compress)
    text = json.dumps(exported, indent=2, ensure_ascii=False)
    if args.output:
        with open(args.output, "w", encoding="utf-8") as f:
            f.write(text + "\n")
        log.info(f"Exported {args.state_id} -> {args.output}")
    else:
        print(text)
    return 0


def cmd_import(args, cfg) -> int:
    store = _store(cfg)
    with open(args.file, "r", encoding="utf-8") as f:
        data = json.load(f)
    result = store.save(store.import_state(data))
    store.shutdown()
    print(json.dumps(result, indent=2))
    return 0


def cmd_delete(args, cfg) -> int:
    store = _store(cfg)
    if not store.delete(args.state_id):
        print(f"State {args.state_id} not found", file=sys.stderr)
        return 1
    store.shutdown()
    print(f"Deleted {args.state_id}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="hdr-vault", description="HDR Vault state store")
    ap.add_argument("--config", default=None, help="YAML config path (default: $HDR_VAULT_CONFIG)")
    ap.add_argument("--log-level", default=None)
    ap.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    sub = ap.add_subparsers(dest="command", required=True)

    p = sub.add_parser("serve", help="run the REST API")
    p.add_argument("--host", default=None)
    p.add_argument("--port", type=int, default=None)
    p.set_defaults(func=cmd_serve)

    sub.add_parser("list", help="list stored states").set_defaults(func=cmd_list)
    sub.add_parser("stats", help="storage statistics").set_defaults(func=cmd_stats)

    p = sub.add_parser("export", help="export a stored state")
    p.add_argument("state_id")
    p.add_argument("--format", choices=("json", "binary"), default="json")
    p.add_argument("--no-compress", action="store_true")
    p.add_argument("-o", "--output", default=None)
    p.set_defaults(func=cmd_export)

    p = sub.add_parser("import", help="import an exported state file")
    p.add_argument("file")
    p.set_defaults(func=cmd_import)

    p = sub.add_parser("delete", help="delete a stored state")
    p.add_argument("state_id")
    p.set_defaults(func=cmd_delete)
    return ap


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    cfg = load_config(args.config)
    _setup_logging(args.log_level or cfg.server.log_level)
    try:
        return args.func(args, cfg)
    except VaultError as e:
        log.error(str(e))
        return 2


if __name__ == "__main__":
    sys.exit(main())
