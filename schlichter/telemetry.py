from __future__ import annotations

from collections import Counter

from schlichter import events


class Telemetry:
  """Counts resolution changes per rule and records them in the event log."""

  def __init__(self, enabled: bool = True) -> None:
    self.enabled = enabled
    self.status_changes: Counter[str] = Counter()

  def issue_status_changed(self, rule_key: str) -> None:
    # fire and forget: callers must never fail because of telemetry
    if not self.enabled:
      return
    self.status_changes[rule_key] += 1
    try:
      events.append_event({"type": "issue_status_changed", "rule_key": rule_key})
    except Exception as exc:
      events.log(f"telemetry: could not record status change for {rule_key}: {exc}")
