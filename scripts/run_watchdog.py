#!/usr/bin/env python3
"""Trigger the stuck-call watchdog on a running IntakeGenie server.

Usage:
    python scripts/run_watchdog.py                          # uses APP_BASE_URL / WATCHDOG_SECRET
    python scripts/run_watchdog.py --url https://host       # specific server
    python scripts/run_watchdog.py --secret s3cret --quiet  # only print counts
"""

import argparse
import json
import os
import sys

import httpx
from dotenv import load_dotenv


def trigger(url: str, secret: str, timeout: float = 60.0) -> dict:
    resp = httpx.post(
        f"{url.rstrip('/')}/watchdog",
        headers={"Authorization": f"Bearer {secret}"},
        timeout=timeout,
    )
    resp.raise_for_status()
    return resp.json()


def format_report(report: dict, quiet: bool = False) -> str:
    line = (
        f"stuck={report.get('count', 0)} "
        f"retriggered={report.get('retriggered', 0)} "
        f"marked_failed={report.get('marked_failed', 0)}"
    )
    if quiet:
        return line
    return line + "\n" + json.dumps(report.get("results", []), indent=2)


def main(argv: list[str] | None = None) -> int:
    load_dotenv()
    parser = argparse.ArgumentParser(description="Run the IntakeGenie watchdog sweep")
    parser.add_argument("--url", default=os.getenv("APP_BASE_URL", "http://localhost:8000"))
    parser.add_argument("--secret", default=os.getenv("WATCHDOG_SECRET", ""))
    parser.add_argument("--quiet", action="store_true", help="print counts only")
    args = parser.parse_args(argv)

    if not args.secret:
        print("Error: WATCHDOG_SECRET not set (use --secret)", file=sys.stderr)
        return 2

    try:
        report = trigger(args.url, args.secret)
    except httpx.HTTPError as e:
        print(f"Error: watchdog request failed: {e}", file=sys.stderr)
        return 1

    print(format_report(report, quiet=args.quiet))
    return 0


if __name__ == "__main__":
    sys.exit(main())
