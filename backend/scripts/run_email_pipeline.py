#!/usr/bin/env python3
"""
Run one mailbox poll cycle from the command line.

Usage:
    # Process unread confirmations after the stored cursor
    python run_email_pipeline.py

    # Reprocess from a specific UID (does not move the stored cursor back)
    python run_email_pipeline.py --since-uid 0

    # Create tables first (fresh database)
    python run_email_pipeline.py --init-db

    # Show inbox and review queue counts only
    python run_email_pipeline.py --stats
"""

import argparse
import json
import os
import sys

from dotenv import load_dotenv

# Add backend to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

# Load environment
load_dotenv(override=False)

from database.base import create_db_engine, create_session_factory, init_db, session_scope
from database import emails as email_db
from ingest.errors import PersistenceError, ServiceUnavailableError
from services import pipeline_service, review_service


def show_stats(session_factory) -> None:
    inbox = pipeline_service.get_inbox_status(session_factory)
    queue = review_service.get_stats(session_factory)
    print(json.dumps({"inbox": inbox, "review_queue": queue}, indent=2, default=str))


def run(session_factory, since_uid: int = None) -> int:
    pipeline = pipeline_service.build_pipeline(session_factory)

    if since_uid is None:
        report = pipeline_service.run_poll_cycle(session_factory, pipeline)
    else:
        report = pipeline.run_cycle(since_uid)
        with session_scope(session_factory) as session:
            email_db.save_cursor(session, pipeline_service.mailbox_cursor_key(pipeline), report.next_cursor)
            session.commit()

    print(json.dumps(report.to_dict(), indent=2))
    return 0 if report.errors == 0 else 2


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Ingest trade confirmation emails")
    parser.add_argument(
        "--since-uid",
        type=int,
        default=None,
        help="Start after this IMAP UID instead of the stored cursor",
    )
    parser.add_argument("--init-db", action="store_true", help="Create missing tables first")
    parser.add_argument("--stats", action="store_true", help="Show counts only")
    args = parser.parse_args(argv)

    engine = create_db_engine()
    if args.init_db:
        init_db(engine)
    session_factory = create_session_factory(engine)

    if args.stats:
        show_stats(session_factory)
        return 0

    try:
        return run(session_factory, args.since_uid)
    except ServiceUnavailableError as e:
        print(f"❌ Mailbox unavailable: {e}", file=sys.stderr)
        return 1
    except PersistenceError as e:
        print(f"❌ Database error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
