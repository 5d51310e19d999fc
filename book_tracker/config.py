from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime, timezone, tzinfo
from pathlib import Path
from zoneinfo import ZoneInfo

CONFIG_PATH = Path(__file__).resolve().parent.parent / "config.json"

DEFAULTS = {
    "db_path": "books.db",
    "review_batch_size": 50,
    "timezone": "",
    "host": "127.0.0.1",
    "port": 8766,
    "log_level": "INFO",
}


@dataclass
class Settings:
    db_path: str = DEFAULTS["db_path"]
    review_batch_size: int = DEFAULTS["review_batch_size"]
    timezone: str = DEFAULTS["timezone"]  # IANA name; empty means UTC
    host: str = DEFAULTS["host"]
    port: int = DEFAULTS["port"]
    log_level: str = DEFAULTS["log_level"]

    @property
    def project_root(self) -> Path:
        return Path(__file__).resolve().parent.parent

    @property
    def db_full_path(self) -> Path:
        return self.project_root / self.db_path

    @property
    def tzinfo(self) -> tzinfo:
        if not self.timezone:
            return timezone.utc
        return ZoneInfo(self.timezone)

    def now(self) -> datetime:
        """Current time in the configured zone, so due dates follow the local calendar."""
        return datetime.now(self.tzinfo)

    def to_dict(self) -> dict:
        return {
            "db_path": self.db_path,
            "review_batch_size": self.review_batch_size,
            "timezone": self.timezone,
            "host": self.host,
            "port": self.port,
            "log_level": self.log_level,
        }


def load_settings() -> Settings:
    if CONFIG_PATH.exists():
        raw = json.loads(CONFIG_PATH.read_text())
        known = {f.name for f in Settings.__dataclass_fields__.values()}
        filtered = {k: v for k, v in raw.items() if k in known}
        return Settings(**filtered)
    return Settings()


def save_settings(settings: Settings) -> None:
    CONFIG_PATH.write_text(json.dumps(settings.to_dict(), indent=4) + "\n")
