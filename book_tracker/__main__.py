"""CLI entry point for book-tracker.

Usage:
  python -m book_tracker serve [--port PORT] [--host HOST]
  python -m book_tracker stop
  python -m book_tracker restart [--port PORT]
  python -m book_tracker status
  python -m book_tracker stats
  python -m book_tracker due
  python -m book_tracker review
"""
from __future__ import annotations

import os
import signal
import sys
from pathlib import Path

PID_FILE = Path(__file__).resolve().parent.parent / ".server.pid"


def main():
    args = sys.argv[1:]
    command = args[0] if args else "serve"

    if command == "serve":
        _serve(args[1:])
    elif command == "stop":
        _stop()
    elif command == "restart":
        _restart(args[1:])
    elif command == "status":
        _status()
    elif command == "stats":
        _stats()
    elif command == "due":
        _due()
    elif command == "review":
        _review()
    else:
        print(f"Unknown command: {command}")
        print("Commands: serve, stop, restart, status, stats, due, review")
        sys.exit(1)


def _parse_flag(args: list[str], name: str, default: str) -> str:
    for i, a in enumerate(args):
        if a == name and i + 1 < len(args):
            return args[i + 1]
    return default


class ServerPid:
    """PID file of the background server, kept next to the package."""

    def __init__(self, path: Path = PID_FILE):
        self.path = path

    def running(self) -> int | None:
        """PID of the live server. A file naming a dead process is discarded."""
        try:
            pid = int(self.path.read_text().strip())
        except (FileNotFoundError, ValueError):
            self.release()
            return None
        if not _alive(pid):
            self.release()
            return None
        return pid

    def claim(self) -> None:
        self.path.write_text(str(os.getpid()))

    def release(self) -> None:
        self.path.unlink(missing_ok=True)

    def terminate(self) -> int | None:
        """Send SIGTERM to the server. Returns its PID, or None if none was running."""
        pid = self.running()
        if pid is None:
            return None
        try:
            os.kill(pid, signal.SIGTERM)
        except ProcessLookupError:
            pid = None
        self.release()
        return pid


def _alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True  # exists, owned by another user
    return True


def _stop(pidfile: ServerPid | None = None) -> bool:
    pid = (pidfile or ServerPid()).terminate()
    if pid is None:
        print("Server is not running.")
        return False
    print(f"Stopped server (PID {pid}).")
    return True


def _status(pidfile: ServerPid | None = None):
    pid = (pidfile or ServerPid()).running()
    print("Server is not running." if pid is None else f"Server is running (PID {pid}).")


def _restart(args: list[str]):
    import time
    if _stop():
        time.sleep(1)
    _serve(args)


def _serve(args: list[str]):
    import uvicorn

    from book_tracker.config import load_settings

    pidfile = ServerPid()
    existing = pidfile.running()
    if existing is not None:
        print(f"Server already running (PID {existing}). Use 'restart' or 'stop' first.")
        sys.exit(1)

    settings = load_settings()
    port = int(_parse_flag(args, "--port", str(settings.port)))
    host = _parse_flag(args, "--host", settings.host)
    pidfile.claim()

    print(f"Starting Book Tracker on http://{host}:{port}")
    print("Press Ctrl+C to stop\n")
    try:
        uvicorn.run(
            "book_tracker.app:app",
            host=host,
            port=port,
            reload=False,
            log_level=settings.log_level.lower(),
            timeout_graceful_shutdown=5,
        )
    finally:
        pidfile.release()


def _stats():
    from book_tracker.config import load_settings
    from book_tracker.db import Database

    settings = load_settings()
    db = Database(settings.db_full_path)
    stats = db.get_stats(settings.now())
    by_status = stats["books_by_status"]

    print("Book Tracker Stats")
    print("=" * 40)
    print(f"Books:              {stats['total_books']}")
    print(f"  to read:          {by_status.get('to-read', 0)}")
    print(f"  reading:          {by_status.get('reading', 0)}")
    print(f"  done:             {by_status.get('done', 0)}")
    print(f"Favorites:          {stats['favorite_books']}")
    print(f"Reading logs:       {stats['total_logs']}")
    print(f"Minutes read:       {stats['total_minutes']}")
    print(f"Pages read:         {stats['total_pages_read']}")
    print(f"Hard words:         {stats['total_words']}")
    print(f"Words due:          {stats['words_due']}")
    print(f"Words reviewed:     {stats['words_reviewed']}")
    db.close()


def _due():
    from book_tracker.config import load_settings
    from book_tracker.db import Database
    from book_tracker.srs import select_due_words

    settings = load_settings()
    db = Database(settings.db_full_path)
    words = select_due_words(db, settings.now(), limit=settings.review_batch_size)
    if not words:
        print("All caught up. No words are due right now.")
    for w in words:
        book = w.get("book_title") or "?"
        print(f"  {w['word']:24s} due {w['srs_due_at'][:16]}  ({book})")
    db.close()


def _review():
    """Review due words one at a time in the terminal."""
    from book_tracker.config import load_settings
    from book_tracker.db import Database
    from book_tracker.srs import parse_rating, record_review, select_due_words

    settings = load_settings()
    db = Database(settings.db_full_path)
    reviewed = 0

    try:
        while True:
            due = select_due_words(db, settings.now(), limit=1)
            if not due:
                print("All caught up. No words are due right now.")
                break
            w = due[0]
            print()
            print(w["word"])
            if input("  [Enter] reveal, [q] quit: ").strip().lower() == "q":
                break
            print(f"  Meaning: {w['meaning'] or '-'}")
            if w["context"]:
                print(f"  Context: “{w['context']}”")

            while True:
                answer = input("  Rate [a]gain [h]ard [g]ood [e]asy, [q] quit: ")
                if answer.strip().lower() == "q":
                    return
                try:
                    rating = parse_rating(answer)
                    break
                except ValueError as e:
                    print(f"  {e}")

            result = record_review(db, w["id"], rating, now=settings.now())
            reviewed += 1
            print(f"  Next review in {result['interval_days']} day(s)")
    except (EOFError, KeyboardInterrupt):
        print()
    finally:
        print(f"\nReviewed {reviewed} word(s).")
        db.close()


if __name__ == "__main__":
    main()
