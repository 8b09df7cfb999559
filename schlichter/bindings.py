from __future__ import annotations

from dataclasses import dataclass

from schlichter.config import ConnectionConfig, ScopeConfig, Settings


@dataclass(frozen=True)
class Binding:
  connection_id: str
  project_key: str


class ConfigurationRepository:
  """Read-only view on configured scopes and their server bindings."""

  def __init__(self, scopes: dict[str, ScopeConfig] | None = None) -> None:
    self._scopes = dict(scopes or {})

  @classmethod
  def from_settings(cls, settings: Settings) -> ConfigurationRepository:
    return cls(settings.scopes)

  def scope_ids(self) -> list[str]:
    return sorted(self._scopes)

  def binding(self, scope_id: str) -> Binding | None:
    scope = self._scopes.get(scope_id)
    if scope is None or not scope.connection or not scope.project_key:
      return None
    return Binding(connection_id=scope.connection, project_key=scope.project_key)

  def effective_binding(self, scope_id: str) -> Binding | None:
    """Return the binding of the scope or of its closest bound parent."""
    seen: set[str] = set()
    current: str | None = scope_id
    while current is not None and current not in seen:
      seen.add(current)
      binding = self.binding(current)
      if binding is not None:
        return binding
      scope = self._scopes.get(current)
      current = scope.parent if scope else None
    return None


class ConnectionRepository:
  def __init__(self, connections: dict[str, ConnectionConfig] | None = None) -> None:
    self._connections = dict(connections or {})

  @classmethod
  def from_settings(cls, settings: Settings) -> ConnectionRepository:
    return cls(settings.connections)

  def get(self, connection_id: str) -> ConnectionConfig | None:
    return self._connections.get(connection_id)

  def remove(self, connection_id: str) -> None:
    self._connections.pop(connection_id, None)
