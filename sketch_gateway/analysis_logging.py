from __future__ import annotations

import json
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional


class AnalysisLogger:
    """
    JSON-lines diagnostics for analysis passes and reconciliation.
    Each entry is appended to <base_dir>/analysis-YYYYMMDD.log (UTC day).
    """

    def __init__(self, *, base_dir: Optional[Path] = None, session_id: Optional[str] = None) -> None:
        default_dir = Path(__file__).resolve().parent / "analysis_logs"
        self.base_dir = base_dir or default_dir
        self.base_dir.mkdir(parents=True, exist_ok=True)
        self.session_id = session_id
        self._lock = threading.Lock()

    def for_session(self, session_id: str) -> "AnalysisLogger":
        child = AnalysisLogger(base_dir=self.base_dir, session_id=session_id)
        child._lock = self._lock
        return child

    def path_for(self, when: datetime) -> Path:
        return self.base_dir / f"analysis-{when.strftime('%Y%m%d')}.log"

    def log(self, event: str, payload: Dict[str, Any]) -> None:
        now = datetime.now(timezone.utc)
        entry: Dict[str, Any] = {
            "ts": now.strftime("%Y-%m-%dT%H:%M:%S.") + f"{now.microsecond // 1000:03d}Z",
            "event": event,
        }
        if self.session_id:
            entry["session"] = self.session_id
        entry.update(payload)
        line = json.dumps(entry, ensure_ascii=False, default=str)
        with self._lock, self.path_for(now).open("a", encoding="utf-8") as fp:
            fp.write(line + "\n")

    __call__ = log
