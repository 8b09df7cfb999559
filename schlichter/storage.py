"""File backed stores for local-only findings, server findings and server info."""
from __future__ import annotations

import json
import os
import tempfile
import threading
import uuid
from collections.abc import Iterable
from dataclasses import replace
from pathlib import Path
from typing import Any
from urllib.parse import quote

from schlichter.bindings import Binding
from schlichter.findings import FindingMeta, LocalOnlyFinding


def _safe_name(value: str) -> str:
  return quote(value, safe="") or "_"


def read_json(path: Path, default: Any) -> Any:
  if not path.exists():
    return default
  try:
    return json.loads(path.read_text(encoding="utf-8"))
  except json.JSONDecodeError as exc:
    raise ValueError(f"{path}: corrupt store file ({exc})") from exc


def write_json_atomic(target: Path, data: Any) -> None:
  """Write JSON next to the target and move it in place.

  A crash during the write leaves the previous file untouched.
  """
  target.parent.mkdir(parents=True, exist_ok=True)
  tmp_path = None
  try:
    fd, tmp_path = tempfile.mkstemp(dir=target.parent, prefix=f".{target.name}.tmp-")
    with os.fdopen(fd, "w", encoding="utf-8") as handle:
      json.dump(data, handle, ensure_ascii=False, indent=2)
    os.replace(tmp_path, target)
  finally:
    if tmp_path and os.path.exists(tmp_path):
      os.unlink(tmp_path)


class LocalOnlyFindingStore:
  """Findings the server does not know yet, resolved or not, keyed by their UUID."""

  def __init__(self, path: Path) -> None:
    self.path = path
    self._lock = threading.RLock()

  def _read(self) -> dict[str, dict[str, Any]]:
    data = read_json(self.path, {})
    return data.get("findings", {}) if isinstance(data, dict) else {}

  def _write(self, records: dict[str, dict[str, Any]]) -> None:
    write_json_atomic(self.path, {"findings": records})

  def find(self, finding_id: uuid.UUID) -> LocalOnlyFinding | None:
    with self._lock:
      record = self._read().get(str(finding_id))
    return LocalOnlyFinding.from_dict(record) if record else None

  def load_all(self, scope_id: str) -> list[LocalOnlyFinding]:
    with self._lock:
      records = self._read()
    return [LocalOnlyFinding.from_dict(r) for r in records.values() if r.get("scope_id") == scope_id]

  def load_for_path(self, scope_id: str, file_path: str) -> list[LocalOnlyFinding]:
    return [f for f in self.load_all(scope_id) if f.file_path == file_path]

  def store(self, scope_id: str, finding: LocalOnlyFinding) -> None:
    """Insert or replace the finding under its id."""
    record = finding.to_dict()
    record["scope_id"] = scope_id
    with self._lock:
      records = self._read()
      records[str(finding.id)] = record
      self._write(records)

  def store_all(self, scope_id: str, findings: Iterable[LocalOnlyFinding]) -> list[LocalOnlyFinding]:
    """Insert or replace findings in a single write.

    A finding recorded again without a resolution keeps the resolution already
    stored for its id.
    """
    stored: list[LocalOnlyFinding] = []
    with self._lock:
      records = self._read()
      for finding in findings:
        finding = replace(finding, scope_id=scope_id)
        existing = records.get(str(finding.id))
        if finding.resolution is None and existing and existing.get("scope_id") == scope_id:
          finding.resolution = LocalOnlyFinding.from_dict(existing).resolution
        records[str(finding.id)] = finding.to_dict()
        stored.append(finding)
      if stored:
        self._write(records)
    return stored

  def remove_one(self, finding_id: uuid.UUID) -> bool:
    with self._lock:
      records = self._read()
      if records.pop(str(finding_id), None) is None:
        return False
      self._write(records)
      return True

  def remove_for_path(self, scope_id: str, file_path: str) -> int:
    with self._lock:
      records = self._read()
      kept = {
        key: record
        for key, record in records.items()
        if not (record.get("scope_id") == scope_id and record.get("file_path") == file_path)
      }
      removed = len(records) - len(kept)
      if removed:
        self._write(kept)
      return removed


class ServerFindingStore:
  """Cache of the issues a bound project has on the server.

  Taint vulnerabilities are kept apart from regular issues, the same key can
  only be looked up in the section it was stored in.
  """

  def __init__(self, path: Path) -> None:
    self.path = path
    self._lock = threading.RLock()

  @staticmethod
  def _section(is_taint: bool) -> str:
    return "taint" if is_taint else "issues"

  def _read(self) -> dict[str, dict[str, dict[str, Any]]]:
    data = read_json(self.path, {})
    if not isinstance(data, dict):
      data = {}
    data.setdefault("issues", {})
    data.setdefault("taint", {})
    return data

  def get(self, key: str, is_taint: bool) -> FindingMeta | None:
    with self._lock:
      record = self._read()[self._section(is_taint)].get(key)
    if record is None:
      return None
    return FindingMeta(key=key, rule_key=record["rule_key"], resolved=bool(record.get("resolved")), taint=is_taint)

  def contains(self, key: str, is_taint: bool) -> bool:
    return self.get(key, is_taint) is not None

  def update_resolution(self, key: str, is_taint: bool, resolved: bool) -> FindingMeta | None:
    with self._lock:
      data = self._read()
      record = data[self._section(is_taint)].get(key)
      if record is None:
        return None
      record["resolved"] = resolved
      write_json_atomic(self.path, data)
    return FindingMeta(key=key, rule_key=record["rule_key"], resolved=resolved, taint=is_taint)

  def replace_all(self, findings: Iterable[FindingMeta]) -> None:
    data: dict[str, dict[str, dict[str, Any]]] = {"issues": {}, "taint": {}}
    for meta in findings:
      data[self._section(meta.taint)][meta.key] = {"rule_key": meta.rule_key, "resolved": meta.resolved}
    with self._lock:
      write_json_atomic(self.path, data)


class StorageService:
  """Entry point to every store below one storage directory."""

  def __init__(self, root: Path) -> None:
    self.root = root
    self._local_only = LocalOnlyFindingStore(root / "local_only" / "findings.json")
    self._bindings: dict[Binding, ServerFindingStore] = {}
    self._lock = threading.Lock()

  def local_only(self) -> LocalOnlyFindingStore:
    return self._local_only

  def binding(self, binding: Binding) -> ServerFindingStore:
    with self._lock:
      store = self._bindings.get(binding)
      if store is None:
        path = (
          self.root / "bindings" / _safe_name(binding.connection_id) / f"{_safe_name(binding.project_key)}.json"
        )
        store = ServerFindingStore(path)
        self._bindings[binding] = store
      return store

  def server_info_path(self, connection_id: str) -> Path:
    return self.root / "connections" / _safe_name(connection_id) / "server_info.json"
