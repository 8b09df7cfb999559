"""Shared configuration and paths for schlichter components."""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

# Centralized path configuration
HOME = Path.home()
STATE = Path(os.environ.get("XDG_STATE_HOME", HOME / ".local/state")) / "schlichter"
CONFIG = Path(os.environ.get("XDG_CONFIG_HOME", HOME / ".config")) / "schlichter"
EVENTS = STATE / "events"
LOGS = STATE / "logs"
STORAGE = STATE / "storage"

CLOUD_URL = "https://sonarcloud.io"
KIND_SELF_HOSTED = "self-hosted"
KIND_CLOUD = "cloud"

DEFAULT_HTTP_TIMEOUT_SECONDS = 30.0
API_KEY_ENV = "SCHLICHTER_API_KEY"


def ensure_directories() -> None:
  """Ensure all required directories exist."""
  for path in (STATE, CONFIG, EVENTS, LOGS, STORAGE):
    path.mkdir(parents=True, exist_ok=True)


def load_yaml(path: Path) -> dict[str, Any]:
  """Load a YAML file.

  Args:
    path: Path to YAML file

  Returns:
    Parsed YAML content as dictionary
  """
  with path.open("r", encoding="utf-8") as handle:
    data = yaml.safe_load(handle)
  if data is None:
    return {}
  if not isinstance(data, dict):
    raise ValueError(f"{path}: expected a mapping at top level")
  return data


def get_connections_path() -> Path:
  """Get the path to the active connections file.

  Returns:
    Path to connections.yml (user config or repo default)
  """
  override = os.environ.get("SCHLICHTER_CONNECTIONS")
  if override:
    return Path(override)
  user_file = CONFIG / "connections.yml"
  if user_file.exists():
    return user_file

  current = Path(__file__).resolve()
  for parent in current.parents:
    if (parent / "config" / "connections.yml").exists():
      return parent / "config" / "connections.yml"

  return Path(__file__).resolve().parents[1] / "config" / "connections.yml"


@dataclass(frozen=True)
class ConnectionConfig:
  id: str
  url: str
  kind: str = KIND_SELF_HOSTED
  token: str | None = None
  organization: str | None = None

  @property
  def is_cloud(self) -> bool:
    return self.kind == KIND_CLOUD

  @classmethod
  def from_dict(cls, data: dict[str, Any]) -> ConnectionConfig:
    connection_id = str(data.get("id") or "").strip()
    if not connection_id:
      raise ValueError("connection without id")
    url = str(data.get("url") or CLOUD_URL).rstrip("/")
    kind = data.get("kind")
    if kind is None:
      kind = KIND_CLOUD if url == CLOUD_URL else KIND_SELF_HOSTED
    if kind not in (KIND_SELF_HOSTED, KIND_CLOUD):
      raise ValueError(f"connection {connection_id}: unknown kind {kind!r}")
    token = data.get("token")
    token_env = data.get("token_env")
    if token_env:
      token = os.environ.get(str(token_env), token)
    return cls(
      id=connection_id,
      url=url,
      kind=kind,
      token=str(token) if token else None,
      organization=data.get("organization"),
    )


@dataclass(frozen=True)
class ScopeConfig:
  id: str
  connection: str | None = None
  project_key: str | None = None
  parent: str | None = None

  @classmethod
  def from_dict(cls, scope_id: str, data: dict[str, Any] | None) -> ScopeConfig:
    data = data or {}
    return cls(
      id=scope_id,
      connection=data.get("connection"),
      project_key=data.get("project_key"),
      parent=data.get("parent"),
    )


@dataclass
class Settings:
  connections: dict[str, ConnectionConfig] = field(default_factory=dict)
  scopes: dict[str, ScopeConfig] = field(default_factory=dict)
  http_timeout: float = DEFAULT_HTTP_TIMEOUT_SECONDS
  storage_dir: Path = STORAGE
  api_key: str | None = None

  @classmethod
  def from_dict(cls, data: dict[str, Any]) -> Settings:
    connections: dict[str, ConnectionConfig] = {}
    for raw in data.get("connections") or []:
      conn = ConnectionConfig.from_dict(raw)
      connections[conn.id] = conn
    scopes = {
      str(scope_id): ScopeConfig.from_dict(str(scope_id), raw)
      for scope_id, raw in (data.get("scopes") or {}).items()
    }
    timeout = data.get("http_timeout")
    storage_dir = data.get("storage_dir")
    return cls(
      connections=connections,
      scopes=scopes,
      http_timeout=float(timeout) if timeout is not None else DEFAULT_HTTP_TIMEOUT_SECONDS,
      storage_dir=Path(storage_dir).expanduser() if storage_dir else STORAGE,
      api_key=os.environ.get(API_KEY_ENV),
    )

  @classmethod
  def load(cls, path: Path | None = None) -> Settings:
    config_path = path or get_connections_path()
    data = load_yaml(config_path) if config_path.exists() else {}
    return cls.from_dict(data)
