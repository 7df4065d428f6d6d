from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Any, Dict, Optional

from .app import build_context
from .config.loader import load_config
from .errors import NotFound, RunLockError, Unavailable
from .io.lock import RunLock
from .io.timeutil import make_run_id, utc_now_iso
from .logging.logger import JsonlLogger
from .matching.identity_resolver import best_match
from .models.records import RecordKind
from .repositories.db import connect, migrate
from .repositories.metadata_store import MetadataStore


def _print_json(obj: Any) -> None:
    sys.stdout.write(json.dumps(obj, ensure_ascii=False, indent=2, default=str) + "\n")


def _dump(record: Optional[Any]) -> Optional[Dict[str, Any]]:
    if record is None:
        return None
    return record.model_dump(mode="json")


# ============================================================================
# init-db
# ============================================================================

def cmd_init_db(args: argparse.Namespace) -> int:
    cfg = load_config(args.config)
    con = connect(cfg.paths.sqlite_db)
    migrate(con)
    con.close()
    _print_json({"sqlite_db": cfg.paths.sqlite_db, "migrated_ts": utc_now_iso()})
    return 0


# ============================================================================
# refresh-prices (scheduled)
# ============================================================================

def cmd_refresh_prices(args: argparse.Namespace) -> int:
    cfg = load_config(args.config)
    run_id = args.run_id or make_run_id()

    lock = RunLock(cfg.paths.lockfile, ttl_seconds=args.lock_ttl_seconds)
    logger = JsonlLogger(cfg.paths.logs_dir, run_id=run_id, component="refresh")

    try:
        lock.acquire(owner_run_id=run_id, owner_info={"action": "refresh-prices"}, wait_seconds=args.lock_wait_seconds)
    except RunLockError as e:
        logger.log("refresh.locked", error=str(e))
        sys.stderr.write(f"{e}\n")
        return 2

    try:
        ctx = build_context(cfg, logger)
        try:
            report = ctx.coordinator(batch_size=args.batch_size, batch_delay_s=args.batch_delay_s).refresh_expired()
        finally:
            ctx.close()

        out = {"run_id": run_id, "created_ts": utc_now_iso(), **report.to_dict()}
        out_dir = Path(cfg.paths.reports_dir)
        out_dir.mkdir(parents=True, exist_ok=True)
        (out_dir / f"refresh_report.{run_id}.json").write_text(
            json.dumps(out, ensure_ascii=False, indent=2) + "\n", encoding="utf-8"
        )
        _print_json(out)
        return 0
    finally:
        lock.release()


# ============================================================================
# interactive lookups
# ============================================================================

def cmd_lookup(args: argparse.Namespace) -> int:
    cfg = load_config(args.config)
    logger = JsonlLogger(cfg.paths.logs_dir, run_id=args.run_id or make_run_id(), component="lookup")
    ctx = build_context(cfg, logger)
    try:
        kind = RecordKind(args.kind)
        if kind is RecordKind.PRICE:
            rec = ctx.service.request_price(args.primary_id)
        else:
            rec = ctx.service.request_metadata(kind, args.primary_id)
    finally:
        ctx.close()
    _print_json({"kind": kind.value, "primary_id": args.primary_id, "record": _dump(rec)})
    return 0 if rec is not None else 1


def cmd_resolve(args: argparse.Namespace) -> int:
    cfg = load_config(args.config)
    logger = JsonlLogger(cfg.paths.logs_dir, run_id=args.run_id or make_run_id(), component="resolve")
    ctx = build_context(cfg, logger)
    try:
        try:
            candidates = ctx.secondary.fetch_inventory_candidates(args.set_num)
            match = best_match(args.name, candidates)
        except (NotFound, Unavailable) as e:
            _print_json({"name": args.name, "set_num": args.set_num, "match": None, "error": str(e)})
            return 1
    finally:
        ctx.close()
    _print_json({
        "name": args.name,
        "set_num": args.set_num,
        "match": {"id": match.candidate.id, "label": match.candidate.label, "score": round(match.score, 2)},
        "candidates": len(candidates),
    })
    return 0


def cmd_expire_price(args: argparse.Namespace) -> int:
    cfg = load_config(args.config)
    con = connect(cfg.paths.sqlite_db)
    migrate(con)
    changed = MetadataStore(con).mark_price_expired(args.primary_id)
    con.close()
    _print_json({"primary_id": args.primary_id, "expired": changed})
    return 0 if changed else 1


# ============================================================================
# CLI entrypoint
# ============================================================================

def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="brickcache")
    sub = p.add_subparsers(dest="cmd", required=True)

    i = sub.add_parser("init-db", help="create/migrate the metadata database")
    i.add_argument("--config", required=True)
    i.set_defaults(func=cmd_init_db)

    r = sub.add_parser("refresh-prices", help="re-price expired records in rate-limited batches")
    r.add_argument("--config", required=True)
    r.add_argument("--run-id", default=None)
    r.add_argument("--batch-size", type=int, default=None)
    r.add_argument("--batch-delay-s", type=float, default=None)
    r.add_argument("--lock-ttl-seconds", type=int, default=3600)
    r.add_argument("--lock-wait-seconds", type=int, default=0)
    r.set_defaults(func=cmd_refresh_prices)

    lk = sub.add_parser("lookup", help="read-through metadata or price lookup")
    lk.add_argument("--config", required=True)
    lk.add_argument("--kind", choices=[k.value for k in RecordKind], default=RecordKind.FIGURE.value)
    lk.add_argument("--run-id", default=None)
    lk.add_argument("primary_id")
    lk.set_defaults(func=cmd_lookup)

    rs = sub.add_parser("resolve", help="match a name against a set's marketplace inventory")
    rs.add_argument("--config", required=True)
    rs.add_argument("--set", dest="set_num", required=True)
    rs.add_argument("--run-id", default=None)
    rs.add_argument("name")
    rs.set_defaults(func=cmd_resolve)

    e = sub.add_parser("expire-price", help="flag a price record for the next refresh run")
    e.add_argument("--config", required=True)
    e.add_argument("primary_id")
    e.set_defaults(func=cmd_expire_price)

    return p


def main(argv: Optional[list] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    return int(args.func(args))


if __name__ == "__main__":
    raise SystemExit(main())
