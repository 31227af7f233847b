#!/usr/bin/env python3
"""
Trigger the TaskMate cleanup sweep from cron or a systemd timer.

Usage:
    TASKMATE_CRON_SECRET=... python cleanup_cron.py --url http://localhost:3000

    # crontab: daily at 02:00 UTC
    0 2 * * * /usr/bin/python3 /opt/taskmate/cleanup_cron.py

Exits 0 when the server reports success, 1 otherwise.
"""

import argparse
import logging
import os
import sys

import requests

logger = logging.getLogger("taskmate.cron")

DEFAULT_URL = "http://127.0.0.1:3000"


def trigger_cleanup(base_url: str, secret: str, timeout: float = 30) -> dict:
    """POST to /api/cron/cleanup and return the decoded body. Raises on HTTP errors."""
    r = requests.post(
        f"{base_url.rstrip('/')}/api/cron/cleanup",
        headers={"X-API-Key": secret},
        timeout=timeout,
    )
    r.raise_for_status()
    return r.json()


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Run the TaskMate done-task cleanup")
    parser.add_argument("--url", default=os.environ.get("TASKMATE_URL", DEFAULT_URL))
    parser.add_argument("--secret", default=os.environ.get("TASKMATE_CRON_SECRET", ""))
    parser.add_argument("--timeout", type=float, default=30)
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [taskmate] %(levelname)s: %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )

    if not args.secret:
        logger.error("No cron secret: pass --secret or set TASKMATE_CRON_SECRET")
        return 1

    try:
        result = trigger_cleanup(args.url, args.secret, args.timeout)
    except requests.RequestException as e:
        logger.error(f"Cleanup request failed: {e}")
        return 1

    logger.info(f"{result.get('message', 'Cleanup done')}: {result.get('deletedCount', 0)} task(s) deleted")
    return 0


if __name__ == "__main__":
    sys.exit(main())
