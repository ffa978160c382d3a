"""
Audit logging of configuration mutations as structured JSON-Lines.
"""
import json
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from .utils import mask_value

SENSITIVE_FIELDS = ("value", "password", "secret", "token", "key_hex", "iv_hex")


class AuditLogger:
    """Writes structured JSONL audit events without sensitive data."""
    def __init__(self, log_file: Optional[Path]):
        self.log_file = log_file

    def log(self, event_type: str, **kwargs: Any) -> None:
        """Log a structured operation event. A None log file disables logging."""
        if self.log_file is None:
            return
        entry: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "event": event_type,
            "details": kwargs
        }

        for field in SENSITIVE_FIELDS:
            if field in entry["details"]:
                entry["details"][field] = mask_value(str(entry["details"][field]))

        try:
            self.log_file.parent.mkdir(parents=True, exist_ok=True)
            with self.log_file.open("a", encoding="utf-8") as f:
                f.write(json.dumps(entry, default=str) + "\n")
        except OSError as e:
            sys.stderr.write(f"[shellconf audit] Failed to write log: {e}\n")

def get_audit_log(log_file: Path, last_n: int = 50) -> List[Dict[str, Any]]:
    """Retrieve the last N events from the audit log."""
    if not log_file.exists():
        return []

    with log_file.open("r", encoding="utf-8") as f:
        lines = f.readlines()

    parsed = []
    for line in lines[-last_n:]:
        if not line.strip():
            continue
        try:
            parsed.append(json.loads(line))
        except json.JSONDecodeError:
            continue
    return parsed
