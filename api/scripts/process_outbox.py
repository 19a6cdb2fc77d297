import argparse
import json
import sys
from pathlib import Path

sys.path.append(str(Path(__file__).resolve().parents[1]))

from bond.config import NOTIFICATION_MAX_ATTEMPTS
from bond.database import SessionLocal
from bond.services.notifications import NotificationDispatcher


def main() -> None:
    parser = argparse.ArgumentParser(description="Deliver pending notifications from the outbox")
    parser.add_argument("--limit", type=int, default=100)
    parser.add_argument("--max-attempts", type=int, default=NOTIFICATION_MAX_ATTEMPTS)
    parser.add_argument("--list-failed", action="store_true")
    args = parser.parse_args()

    dispatcher = NotificationDispatcher(SessionLocal, max_attempts=args.max_attempts)
    if args.list_failed:
        rows = dispatcher.list_outbox(status="failed", limit=args.limit)
        print(json.dumps(rows, indent=2, default=str))
        return

    summary = dispatcher.process_outbox(limit=args.limit)
    print(json.dumps(summary, indent=2))


if __name__ == "__main__":
    main()
