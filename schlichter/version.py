"""Server version numbers ("10.4", "10.4.0.87286", "9.9-SNAPSHOT")."""
from __future__ import annotations

import re
from dataclasses import dataclass, field

_VERSION_RE = re.compile(r"^(\d+(?:\.\d+)*)(?:[-.]?(.+))?$")


@dataclass(frozen=True)
class Version:
  parts: tuple[int, ...]
  qualifier: str = field(default="", compare=False)
  raw: str = field(default="", compare=False)

  @classmethod
  def create(cls, text: str) -> Version:
    """Parse a dotted version, keeping any trailing qualifier apart.

    Raises:
      ValueError: if the text does not start with a numeric part
    """
    stripped = (text or "").strip()
    match = _VERSION_RE.match(stripped)
    if not match:
      raise ValueError(f"Invalid version: {text!r}")
    parts = tuple(int(p) for p in match.group(1).split("."))
    return cls(parts=parts, qualifier=match.group(2) or "", raw=stripped)

  def compare_ignoring_qualifier(self, other: Version) -> int:
    width = max(len(self.parts), len(other.parts))
    mine = self.parts + (0,) * (width - len(self.parts))
    theirs = other.parts + (0,) * (width - len(other.parts))
    if mine == theirs:
      return 0
    return -1 if mine < theirs else 1

  def satisfies_min_requirement(self, minimum: Version) -> bool:
    return self.compare_ignoring_qualifier(minimum) >= 0

  def __str__(self) -> str:
    return self.raw or ".".join(str(p) for p in self.parts)
