from __future__ import annotations

import argparse
import csv
import datetime as dt
import json
import os
import shutil
from pathlib import Path
from typing import Any

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.engine import Engine
from sqlalchemy.engine.url import make_url

PROPERTY_COLS = [
    "id",
    "category",
    "title",
    "price",
    "location",
    "city",
    "state",
    "locality",
    "status",
    "featured",
    "media_status",
    "created_at",
    "updated_at",
]
SUBSCRIBER_COLS = ["id", "email", "active", "created_at"]


def _default_database_url() -> str:
    env = (os.environ.get("DATABASE_URL") or "").strip()
    if env:
        return env
    # Fallback to the repo-local sqlite DB used in dev.
    db_path = Path(__file__).resolve().parents[1] / "local.db"
    return f"sqlite:///{db_path}"


def _safe_url_for_logs(url: str) -> str:
    try:
        return make_url(url).render_as_string(hide_password=True)
    except Exception:
        return "<unparsed DATABASE_URL>"


def _ensure_empty_dir(out_dir: Path) -> None:
    if out_dir.exists():
        shutil.rmtree(out_dir)
    out_dir.mkdir(parents=True, exist_ok=True)


def _write_csv(path: Path, rows: list[dict[str, Any]], cols: list[str]) -> None:
    with open(path, "w", encoding="utf-8", newline="") as f:
        w = csv.DictWriter(f, fieldnames=cols, extrasaction="ignore")
        w.writeheader()
        for r in rows:
            w.writerow({k: r.get(k) for k in cols})


def _fetch(engine: Engine, table: str, wanted: list[str], *, since: dt.datetime | None) -> tuple[list[dict[str, Any]], list[str]]:
    available = {c["name"] for c in inspect(engine).get_columns(table)}
    cols = [c for c in wanted if c in available]
    where, params = "", {}
    if since is not None and "created_at" in available:
        where, params = 'WHERE "created_at" >= :since', {"since": since}
    col_sql = ", ".join(f'"{c}"' for c in cols)
    q = f'SELECT {col_sql} FROM "{table}" {where} ORDER BY "id" DESC'
    with engine.connect() as conn:
        rows = conn.execute(text(q), params).mappings().all()
    return [dict(r) for r in rows], cols


def _group_count(engine: Engine, table: str, column: str) -> dict[str, int]:
    q = f'SELECT "{column}" AS k, COUNT(*) AS c FROM "{table}" GROUP BY "{column}" ORDER BY c DESC'
    with engine.connect() as conn:
        return {str(r["k"]): int(r["c"]) for r in conn.execute(text(q)).mappings().all()}


def main() -> int:
    ap = argparse.ArgumentParser(description="Write CSV summaries of listings and alert subscribers.")
    ap.add_argument("--database-url", default="", help="SQLAlchemy URL (defaults to env DATABASE_URL or ./local.db).")
    ap.add_argument("--out-dir", required=True, help="Output directory; overwritten.")
    ap.add_argument("--days", type=int, default=0, help="Only rows created in the last N days (0 = all).")
    args = ap.parse_args()

    url = (args.database_url or "").strip() or _default_database_url()
    out_dir = Path(args.out_dir)
    _ensure_empty_dir(out_dir)

    engine = create_engine(url, pool_pre_ping=True, future=True)
    tables = set(inspect(engine).get_table_names())
    since = dt.datetime.now(dt.timezone.utc) - dt.timedelta(days=args.days) if args.days > 0 else None

    summary: dict[str, Any] = {
        "inspected_at_utc": dt.datetime.now(dt.timezone.utc).isoformat(),
        "database_url": _safe_url_for_logs(url),
        "since_utc": since.isoformat() if since else None,
        "tables": sorted(tables),
    }

    if "properties" in tables:
        rows, cols = _fetch(engine, "properties", PROPERTY_COLS, since=since)
        _write_csv(out_dir / "properties.csv", rows, cols)
        summary["properties_rows"] = len(rows)
        summary["properties_by_status"] = _group_count(engine, "properties", "status")
        summary["properties_by_category"] = _group_count(engine, "properties", "category")
        summary["properties_by_city"] = _group_count(engine, "properties", "city")
        summary["properties_by_media_status"] = _group_count(engine, "properties", "media_status")

    if "alert_subscribers" in tables:
        rows, cols = _fetch(engine, "alert_subscribers", SUBSCRIBER_COLS, since=since)
        _write_csv(out_dir / "subscribers.csv", rows, cols)
        summary["subscribers_rows"] = len(rows)
        summary["subscribers_by_active"] = _group_count(engine, "alert_subscribers", "active")

    (out_dir / "summary.json").write_text(json.dumps(summary, indent=2, default=str) + "\n", encoding="utf-8")
    print(f"Wrote summary for {_safe_url_for_logs(url)} to {out_dir}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
