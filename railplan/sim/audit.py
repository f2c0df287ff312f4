import json
from datetime import datetime
from pathlib import Path
from typing import Any, Dict

from railplan.core.config import RuntimeConfig

AUDIT_DIR = Path(RuntimeConfig().audit_dir)
AUDIT_FILE = AUDIT_DIR / "events.jsonl"


def write_audit(event: Dict[str, Any]) -> None:
    # append a JSONL entry
    AUDIT_DIR.mkdir(parents=True, exist_ok=True)
    entry = {"at": datetime.now().isoformat(timespec="seconds"), **event}
    with AUDIT_FILE.open("a", encoding="utf-8") as f:
        f.write(json.dumps(entry, ensure_ascii=False, default=str) + "\n")
