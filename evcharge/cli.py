"""
Run one expiry sweep and exit (for cron or a one-off reconcile).

Usage:
  evcharge-sweep                      # sweep against DB_URL directly
  evcharge-sweep --limit 100
  evcharge-sweep --remote http://localhost:8080 --token "$ADMIN_JWT"
                                      # ask a running dev API to sweep

Exit status is 1 when any booking failed to reconcile.
"""
from __future__ import annotations

import argparse
import json
import logging
import sys

import httpx


def _sweep_remote(base_url: str, token: str, limit: int | None) -> dict:
    params = {"limit": limit} if limit else None
    with httpx.Client(base_url=base_url, timeout=30.0, headers={"Authorization": f"Bearer {token}"}) as client:
        r = client.post("/operator/sweep", params=params)
        r.raise_for_status()
        return r.json()


def main(argv: list[str] | None = None) -> int:
    ap = argparse.ArgumentParser(prog="evcharge-sweep", description="Reconcile bookings whose slot window has ended")
    ap.add_argument("--limit", type=int, default=None, help="Bookings per scan page (default SWEEP_BATCH_LIMIT)")
    ap.add_argument("--remote", default="", help="Base URL of a running API; uses POST /operator/sweep")
    ap.add_argument("--token", default="", help="Admin bearer token for --remote")
    ap.add_argument("-v", "--verbose", action="store_true")
    args = ap.parse_args(argv)

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO, format="%(message)s")

    if args.remote:
        if not args.token:
            print("--token is required with --remote", file=sys.stderr)
            return 2
        try:
            summary = _sweep_remote(args.remote, args.token, args.limit)
        except httpx.HTTPError as e:
            print(f"remote sweep failed: {e}", file=sys.stderr)
            return 1
    else:
        from .sweeper import run_sweep_once

        summary = run_sweep_once(limit=args.limit).as_dict()

    print(json.dumps(summary))
    return 1 if summary.get("failed") else 0


if __name__ == "__main__":
    raise SystemExit(main())
