"""Log lines and JSONL events for schlichter components."""
from __future__ import annotations

import json
import sys
from datetime import datetime, timezone

from schlichter.config import EVENTS, LOGS

LOG_PREFIX = "schlichter"


def log(line: str) -> None:
  """Log a message to stdout and, when possible, to the daily log file.

  A log file that cannot be written never fails the caller, the line is still
  printed.

  Args:
    line: Log message
  """
  now = datetime.now(timezone.utc)
  message = f"[{now.isoformat()}] {line}"
  print(message)
  try:
    LOGS.mkdir(parents=True, exist_ok=True)
    log_file = LOGS / f"{LOG_PREFIX}-{now.strftime('%Y%m%d')}.log"
    with log_file.open("a", encoding="utf-8") as handle:
      handle.write(message + "\n")
  except OSError as exc:
    print(f"[{now.isoformat()}] log file not writable: {exc}", file=sys.stderr)


def append_event(event: dict) -> None:
  """Append an event to the daily event log.

  Args:
    event: Event data dictionary
  """
  now = datetime.now(timezone.utc)
  EVENTS.mkdir(parents=True, exist_ok=True)
  event_file = EVENTS / f"{LOG_PREFIX}-{now.strftime('%Y%m%d')}.jsonl"
  record = {"ts": now.isoformat(), **event}
  with event_file.open("a", encoding="utf-8") as handle:
    handle.write(json.dumps(record, ensure_ascii=False) + "\n")
