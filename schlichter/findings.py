from __future__ import annotations

import uuid
from collections.abc import Iterable
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any

from schlichter.resolution import ResolutionStatus, transition_for


@dataclass(frozen=True)
class ServerKey:
  key: str


@dataclass(frozen=True)
class LocalId:
  id: uuid.UUID


FindingIdentity = ServerKey | LocalId


def classify_key(key: str) -> FindingIdentity:
  """Tell a locally generated finding id apart from a server issue key."""
  try:
    return LocalId(uuid.UUID(key))
  except (TypeError, ValueError, AttributeError):
    return ServerKey(key)


def as_local_id(key: str) -> uuid.UUID | None:
  identity = classify_key(key)
  return identity.id if isinstance(identity, LocalId) else None


def _now() -> datetime:
  return datetime.now(timezone.utc)


@dataclass
class LocalOnlyResolution:
  status: ResolutionStatus
  resolved_at: datetime = field(default_factory=_now)
  comment: str | None = None


@dataclass
class LocalOnlyFinding:
  """A finding the server has never seen, identified by a local UUID."""

  id: uuid.UUID
  scope_id: str
  file_path: str
  rule_key: str
  message: str = ""
  line: int | None = None
  line_hash: str | None = None
  resolution: LocalOnlyResolution | None = None

  @property
  def is_resolved(self) -> bool:
    return self.resolution is not None

  def resolve(self, status: ResolutionStatus) -> None:
    self.resolution = LocalOnlyResolution(status=status, comment="")

  def to_dict(self) -> dict[str, Any]:
    resolution = None
    if self.resolution is not None:
      resolution = {
        "status": self.resolution.status.name,
        "resolved_at": self.resolution.resolved_at.isoformat(),
        "comment": self.resolution.comment,
      }
    return {
      "id": str(self.id),
      "scope_id": self.scope_id,
      "file_path": self.file_path,
      "rule_key": self.rule_key,
      "message": self.message,
      "line": self.line,
      "line_hash": self.line_hash,
      "resolution": resolution,
    }

  @classmethod
  def from_dict(cls, data: dict[str, Any]) -> LocalOnlyFinding:
    raw_resolution = data.get("resolution")
    resolution = None
    if raw_resolution:
      resolution = LocalOnlyResolution(
        status=ResolutionStatus[raw_resolution["status"]],
        resolved_at=datetime.fromisoformat(raw_resolution["resolved_at"]),
        comment=raw_resolution.get("comment"),
      )
    return cls(
      id=uuid.UUID(data["id"]),
      scope_id=data["scope_id"],
      file_path=data["file_path"],
      rule_key=data["rule_key"],
      message=data.get("message", ""),
      line=data.get("line"),
      line_hash=data.get("line_hash"),
      resolution=resolution,
    )

  def to_anticipated_transition(self) -> dict[str, Any]:
    """Payload entry for the anticipated transitions endpoint."""
    if self.resolution is None:
      raise ValueError(f"Local-only finding {self.id} is not resolved")
    return {
      "filePath": self.file_path,
      "line": self.line,
      "hash": self.line_hash,
      "ruleKey": self.rule_key,
      "issueMessage": self.message,
      "transition": transition_for(self.resolution.status).code,
      "comment": self.resolution.comment,
    }


@dataclass(frozen=True)
class FindingMeta:
  """What the server-finding cache knows about a server issue."""

  key: str
  rule_key: str
  resolved: bool = False
  taint: bool = False

  def with_resolution(self, resolved: bool) -> FindingMeta:
    return replace(self, resolved=resolved)


def compute_resolved_set(
  findings: Iterable[LocalOnlyFinding],
  include: LocalOnlyFinding | None = None,
  exclude: Iterable[uuid.UUID] = (),
) -> list[LocalOnlyFinding]:
  """Build the complete set of resolved findings to send for a scope.

  The server always receives the full set, never a delta. ``include`` replaces
  an older copy with the same id (or is appended), ``exclude`` drops ids.
  Unresolved findings are never part of the set.
  """
  excluded = set(exclude)
  result: list[LocalOnlyFinding] = []
  included = False
  for finding in findings:
    if finding.id in excluded:
      continue
    if include is not None and finding.id == include.id:
      finding = include
      included = True
    if finding.is_resolved:
      result.append(finding)
  if include is not None and not included and include.id not in excluded and include.is_resolved:
    result.append(include)
  return result
