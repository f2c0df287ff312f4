from __future__ import annotations
import os
from dataclasses import dataclass
from pathlib import Path
from dotenv import load_dotenv

# Load .env early (no error if missing)
load_dotenv()

ROOT = Path(__file__).resolve().parents[2]


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return int(raw)


@dataclass(frozen=True)
class RuntimeConfig:
    db_path: str = os.getenv("RAILPLAN_DB_PATH", str(ROOT / "data" / "railplan.db"))
    audit_dir: str = os.getenv("RAILPLAN_AUDIT_DIR", str(ROOT / "audit"))
    # Edits closer together than this collapse into one detection pass
    debounce_ms: int = _int_env("RAILPLAN_DEBOUNCE_MS", 300)
    max_conflicts: int = _int_env("RAILPLAN_MAX_CONFLICTS", 9999)
    max_departures_per_day: int = _int_env("RAILPLAN_MAX_DEPARTURES_PER_DAY", 100)
    log_level: str = os.getenv("LOG_LEVEL", "INFO").upper()

    @property
    def debounce_seconds(self) -> float:
        return self.debounce_ms / 1000.0
