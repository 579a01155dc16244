"""
Activity Logger for RACV Quote Agent

Records every quote session verbatim for:
- Debugging failed flows against the live site
- Tuning the timing constants
- Tool usage statistics

Storage format: JSONL (one JSON object per line), one file per quote
session under a date folder. Events that don't belong to a session
(e.g. a start_quote rejected before launch) go to the day's server.jsonl.
"""

import json
import os
from datetime import datetime
from pathlib import Path
from typing import Optional, Dict, Any, List


class ActivityLogger:
    """Logs quote session activity to JSONL files organized by date."""

    def __init__(self, storage_dir: str = "activity"):
        self.storage_dir = Path(storage_dir)
        self.storage_dir.mkdir(parents=True, exist_ok=True)
        self.session_files: Dict[str, Path] = {}

    def _date_folder(self) -> Path:
        folder = self.storage_dir / datetime.now().strftime("%Y-%m-%d")
        folder.mkdir(exist_ok=True)
        return folder

    def start_session(self, session_id: str, metadata: Optional[Dict[str, Any]] = None) -> Path:
        """Start logging a new quote session."""
        session_file = self._date_folder() / f"session_{session_id}.jsonl"
        self.session_files[session_id] = session_file

        self._write_event({
            "event": "session_start",
            "session_id": session_id,
            "metadata": metadata or {}
        }, session_id)

        self._update_index(session_id, session_file)
        return session_file

    def log_state_change(self, session_id: str, state: str) -> None:
        self._write_event({
            "event": "state_change",
            "state": state
        }, session_id)

    def log_tool_call(
        self,
        tool_name: str,
        args: Dict[str, Any],
        result: Any,
        success: bool = True,
        duration_ms: Optional[float] = None,
        session_id: Optional[str] = None
    ) -> None:
        """Log a tool call with its result."""
        event = {
            "event": "tool_call",
            "tool": tool_name,
            "args": args,
            "result": str(result)[:1000],  # Truncate long results
            "success": success
        }

        if duration_ms is not None:
            event["duration_ms"] = round(duration_ms, 2)

        self._write_event(event, session_id)

    def log_tool_error(
        self,
        tool_name: str,
        args: Dict[str, Any],
        error: str,
        traceback_str: Optional[str] = None,
        duration_ms: Optional[float] = None,
        session_id: Optional[str] = None
    ) -> None:
        """Log a tool error with traceback."""
        event = {
            "event": "tool_error",
            "tool": tool_name,
            "args": args,
            "error": error,
            "success": False
        }

        if traceback_str:
            event["traceback"] = traceback_str[:2000]

        if duration_ms is not None:
            event["duration_ms"] = round(duration_ms, 2)

        self._write_event(event, session_id)

    def log_error(
        self,
        error: str,
        context: Optional[Dict[str, Any]] = None,
        session_id: Optional[str] = None
    ) -> None:
        """Log a step failure or other error."""
        self._write_event({
            "event": "error",
            "error": error,
            "context": context or {}
        }, session_id)

    def end_session(self, session_id: str, summary: Optional[str] = None) -> None:
        """End a quote session's log."""
        if session_id not in self.session_files:
            return

        self._write_event({
            "event": "session_end",
            "summary": summary
        }, session_id)
        self.session_files.pop(session_id, None)

    def _write_event(self, event: Dict[str, Any], session_id: Optional[str] = None) -> None:
        """Append an event to its session file, or the day's server log."""
        path = self.session_files.get(session_id) if session_id else None
        if path is None:
            path = self._date_folder() / "server.jsonl"
            if session_id:
                event["session_id"] = session_id

        event["ts"] = datetime.utcnow().isoformat() + "Z"

        with open(path, "a", encoding="utf-8") as f:
            f.write(json.dumps(event, ensure_ascii=False, default=str) + "\n")

    def _update_index(self, session_id: str, session_file: Path) -> None:
        """Update the sessions index file."""
        index_file = self.storage_dir / "index.json"

        if index_file.exists():
            with open(index_file, "r") as f:
                index = json.load(f)
        else:
            index = {"sessions": []}

        index["sessions"].append({
            "session_id": session_id,
            "file": str(session_file.relative_to(self.storage_dir)),
            "started": datetime.utcnow().isoformat() + "Z"
        })

        # Keep last 1000 sessions in index
        index["sessions"] = index["sessions"][-1000:]

        with open(index_file, "w") as f:
            json.dump(index, f, indent=2)

    # =========================================================================
    # Reading/Analysis Methods (for the debug endpoints)
    # =========================================================================

    def get_recent_sessions(self, limit: int = 100) -> List[Dict[str, Any]]:
        """Get the most recently started sessions, newest last."""
        index_file = self.storage_dir / "index.json"
        if not index_file.exists():
            return []

        with open(index_file, "r") as f:
            index = json.load(f)

        return index.get("sessions", [])[-limit:]

    def read_session(self, session_file: str) -> List[Dict[str, Any]]:
        """Read all events from a session file (path relative to storage)."""
        file_path = self.storage_dir / session_file
        if not file_path.exists():
            return []

        events = []
        with open(file_path, "r", encoding="utf-8") as f:
            for line in f:
                if line.strip():
                    events.append(json.loads(line))

        return events

    def find_session(self, session_id: str) -> Optional[Dict[str, Any]]:
        for session in reversed(self.get_recent_sessions(1000)):
            if session.get("session_id") == session_id:
                return session
        return None

    def _event_files(self) -> List[str]:
        files = [s.get("file", "") for s in self.get_recent_sessions()]
        files += [str(p.relative_to(self.storage_dir)) for p in self.storage_dir.glob("*/server.jsonl")]
        return files

    def get_recent_events(self, limit: int = 50) -> List[Dict[str, Any]]:
        """Get the latest events across every session and the server log, oldest first."""
        events = []
        for event_file in self._event_files():
            events.extend(self.read_session(event_file))

        events.sort(key=lambda e: e.get("ts", ""))
        return events[-limit:]

    def get_errors(self, limit: int = 50) -> List[Dict[str, Any]]:
        """Collect tool_error and error events, newest first."""
        errors = []
        for session_file in self._event_files():
            for event in self.read_session(session_file):
                if event.get("event") in ("tool_error", "error"):
                    errors.append(event)

        errors.sort(key=lambda e: e.get("ts", ""), reverse=True)
        return errors[:limit]

    def get_tool_usage_stats(self) -> Dict[str, int]:
        """Count tool calls across recent sessions."""
        tool_counts: Dict[str, int] = {}

        for session in self.get_recent_sessions():
            for event in self.read_session(session["file"]):
                if event.get("event") == "tool_call":
                    tool = event.get("tool", "unknown")
                    tool_counts[tool] = tool_counts.get(tool, 0) + 1

        return tool_counts


# Global logger instance
_logger: Optional[ActivityLogger] = None


def get_logger() -> ActivityLogger:
    """Get or create the activity logger."""
    global _logger
    if _logger is None:
        default_path = Path(__file__).parent.parent / "activity"
        _logger = ActivityLogger(os.getenv("RACV_LOG_DIR", str(default_path)))
    return _logger
