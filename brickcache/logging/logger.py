from __future__ import annotations

from pathlib import Path
import json
import threading
from typing import Any, Dict
from ..io.timeutil import utc_now_iso


class JsonlLogger:
    """Append-only JSON-lines event log, one file per run and component."""

    def __init__(self, logs_dir: str, run_id: str, component: str = "core"):
        self.run_id = run_id
        self.component = component
        out_dir = Path(logs_dir) / f"run-{run_id}"
        out_dir.mkdir(parents=True, exist_ok=True)
        self.path = out_dir / f"{component}.jsonl"
        self._lock = threading.Lock()

    def log(self, event: str, **fields: Any) -> None:
        rec: Dict[str, Any] = {
            "ts": utc_now_iso(),
            "run_id": self.run_id,
            "component": self.component,
            "event": event,
        }
        rec.update(fields)
        line = json.dumps(rec, ensure_ascii=False, default=str) + "\n"
        with self._lock:
            with self.path.open("a", encoding="utf-8") as f:
                f.write(line)

    def read_events(self) -> list:
        if not self.path.exists():
            return []
        with self._lock:
            lines = self.path.read_text(encoding="utf-8").splitlines()
        return [json.loads(l) for l in lines if l.strip()]
