from __future__ import annotations

import json
import os
from dataclasses import dataclass
from datetime import date, datetime
from pathlib import Path

from sleepwatch.store.paths import event_log_path


@dataclass
class EventLog:
    """Append-only JSONL record of fired transitions, one file per day."""

    base_dir: Path | None = None

    def path_for(self, day: date) -> Path:
        if self.base_dir is not None:
            return self.base_dir / f"{day.isoformat()}.jsonl"
        return event_log_path(day)

    def append(self, *, when: datetime, event: dict) -> None:
        """Append a single JSON object as one line."""

        path = self.path_for(when.date())
        path.parent.mkdir(parents=True, exist_ok=True)

        payload = {"ts": when.isoformat(), **event}
        line = json.dumps(payload, ensure_ascii=False, separators=(",", ":"))

        with path.open("a", encoding="utf-8") as f:
            f.write(line)
            f.write("\n")
            f.flush()
            os.fsync(f.fileno())

    def log_command(self, *, when: datetime, label: str, command: str, status: int) -> None:
        self.append(
            when=when,
            event={"event": label, "command": command, "status": status},
        )

    def tail(self, day: date, *, limit: int = 10) -> list[dict]:
        """Return up to `limit` most recent events for `day`, oldest first."""

        path = self.path_for(day)
        if not path.exists():
            return []

        try:
            with path.open("rb") as f:
                try:
                    f.seek(0, 2)
                    size = f.tell()
                    f.seek(max(0, size - 65536), 0)
                except OSError:
                    return []
                data = f.read().decode("utf-8", errors="replace")
        except OSError:
            return []

        events: list[dict] = []
        for line in reversed([ln for ln in data.splitlines() if ln.strip()]):
            try:
                obj = json.loads(line)
            except json.JSONDecodeError:
                continue
            if isinstance(obj, dict):
                events.append(obj)
            if len(events) >= limit:
                break

        events.reverse()
        return events
