from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


@dataclass
class AnalysisRequestState:
    last_edit_time: Optional[float] = None
    last_analysis_time: Optional[float] = None
    pending_analysis: bool = False
    last_strokes_hash: str = ""
    force_flag: bool = False

    def reset(self) -> None:
        self.last_edit_time = None
        self.last_analysis_time = None
        self.pending_analysis = False
        self.last_strokes_hash = ""
        self.force_flag = False
