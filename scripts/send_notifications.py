"""
Drain the notification outbox.

Run on a schedule (cron / platform job):
    python scripts/send_notifications.py [--batch-size 50]
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from dotenv import load_dotenv

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.fellowship.config import load_config
from app.fellowship.notifications import deliver_pending, sender_from_config
from scripts._db_utils import script_session


def main() -> None:
    parser = argparse.ArgumentParser(description="Send queued notification emails.")
    parser.add_argument("--batch-size", type=int, default=50)
    args = parser.parse_args()

    load_dotenv()
    config = load_config()
    logging.basicConfig(level=config["LOG_LEVEL"], format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    if not config["NOTIFICATIONS_ENABLED"]:
        print("Notifications disabled (NOTIFICATIONS_ENABLED=0); nothing to do.")
        return

    sender = sender_from_config(config)
    with script_session(config["DATABASE_URL"]) as s:
        result = deliver_pending(s, sender, batch_size=args.batch_size)
    print(f"Processed {result['processed']} notification(s): {result['sent']} sent, {result['failed']} failed.")


if __name__ == "__main__":
    main()
