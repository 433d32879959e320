"""
Event Log.

Appends HARMFUL judgments as JSON lines:
    {"timestamp": ..., "text": ..., "judgment": "HARMFUL", "reason": ..., "stream": ...}

SAFE judgments are never written.
"""

from __future__ import annotations

import json
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, List, Dict, Any
from loguru import logger

from chatguard.core.contracts import JudgmentResult, StreamKind


class EventLog:
    """Line-delimited JSON log of harmful content."""

    def __init__(self, path: Path):
        self.path = Path(path)
        self._lock = threading.Lock()

    def record(self, result: JudgmentResult, stream: Optional[StreamKind] = None) -> bool:
        """
        Append a judgment if it is HARMFUL.

        Write failures are logged and reported through the return value.

        Returns:
            True if a record was written
        """
        if not result.is_harmful:
            return False

        event: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "text": result.text,
            "judgment": result.judgment.value,
            "reason": result.reason,
        }
        if stream is not None:
            event["stream"] = stream.value

        line = json.dumps(event, ensure_ascii=False)
        try:
            with self._lock:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                with open(self.path, "a", encoding="utf-8") as f:
                    f.write(line + "\n")
        except OSError as e:
            logger.error(f"Failed to log event to {self.path}: {e}")
            return False

        logger.info(f"HARMFUL ({result.reason}): \"{result.text}\"")
        return True

    def read(self) -> List[Dict[str, Any]]:
        """All records, oldest first. Unparseable lines are skipped."""
        if not self.path.exists():
            return []
        records = []
        with open(self.path, encoding="utf-8") as f:
            for number, line in enumerate(f, start=1):
                line = line.strip()
                if not line:
                    continue
                try:
                    records.append(json.loads(line))
                except json.JSONDecodeError:
                    logger.warning(f"Skipping malformed event on line {number} of {self.path}")
        return records
