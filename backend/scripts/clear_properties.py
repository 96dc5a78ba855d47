from __future__ import annotations

import argparse
import os
import sys

# Ensure `estates` imports work when running from backend/.
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from sqlalchemy import delete, select  # noqa: E402

from estates.db import session_scope  # noqa: E402
from estates.media import delete_media_urls  # noqa: E402
from estates.models import AlertSubscriber, Property  # noqa: E402


def clear(*, subscribers: bool = False, keep_media: bool = False) -> tuple[int, int]:
    """Delete every property (and its stored media). Returns (properties, subscribers) removed."""
    with session_scope() as db:
        props = db.execute(select(Property)).scalars().all()
        urls = [u for p in props for u in p.all_media_urls()]
        removed = db.execute(delete(Property)).rowcount or 0
        removed_subs = 0
        if subscribers:
            removed_subs = db.execute(delete(AlertSubscriber)).rowcount or 0
    if not keep_media:
        delete_media_urls(urls)
    return removed, removed_subs


def main() -> None:
    ap = argparse.ArgumentParser(description="Remove all property listings.")
    ap.add_argument("--subscribers", action="store_true", help="Also remove alert subscribers.")
    ap.add_argument("--keep-media", action="store_true", help="Leave uploaded files in place.")
    ap.add_argument("--yes", action="store_true", help="Skip the confirmation prompt.")
    args = ap.parse_args()

    if not args.yes and input("Delete ALL properties? Type 'yes' to continue: ").strip().lower() != "yes":
        raise SystemExit("Aborted")

    props, subs = clear(subscribers=args.subscribers, keep_media=args.keep_media)
    print(f"Cleared {props} properties" + (f" and {subs} subscribers." if args.subscribers else "."))


if __name__ == "__main__":
    main()
