from __future__ import annotations

import argparse
import json
import os
import sys

from ytfinder.config import DEFAULT_INDEX_PATH
from ytfinder.services.index_client import IndexClient, UpstreamError


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Fetch the channel video index once and print the normalized records.",
    )
    parser.add_argument(
        "--base-url",
        type=str,
        default=os.getenv("YTFINDER_INDEX_BASE_URL") or os.getenv("CF_WORKER_BASE_URL"),
        help="Index base URL. Defaults to YTFINDER_INDEX_BASE_URL or CF_WORKER_BASE_URL.",
    )
    parser.add_argument(
        "--path",
        type=str,
        default=os.getenv("YTFINDER_INDEX_PATH", DEFAULT_INDEX_PATH),
        help=f"Index sub-path. Default: {DEFAULT_INDEX_PATH!r}.",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=5.0,
        help="Fetch timeout in seconds.",
    )
    parser.add_argument(
        "--limit",
        type=int,
        default=5,
        help="Number of records to print.",
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    if not args.base_url:
        print("Missing --base-url (or YTFINDER_INDEX_BASE_URL).", file=sys.stderr)
        return 2

    index_url = f"{args.base_url.rstrip('/')}/{args.path.strip('/')}"
    client = IndexClient(index_url)
    try:
        snapshot = client.fetch_index(timeout_seconds=args.timeout)
    except UpstreamError as exc:
        print(json.dumps({"ok": False, "error": exc.to_detail()}, indent=2))
        return 1

    print(
        json.dumps(
            {
                "ok": True,
                "index_url": index_url,
                "channel_title": snapshot.channel_title,
                "total": len(snapshot.items),
                "items": [item.to_payload() for item in snapshot.items[: max(0, args.limit)]],
            },
            indent=2,
            ensure_ascii=False,
        )
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
