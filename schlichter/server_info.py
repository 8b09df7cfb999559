from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

from schlichter import events
from schlichter.errors import MalformedResponse, TransportError
from schlichter.gateway import ServerApi
from schlichter.storage import read_json, write_json_atomic
from schlichter.version import Version


@dataclass(frozen=True)
class ServerInfo:
  version: Version
  status: str | None = None
  synced_at: datetime | None = None


class ServerInfoStore:
  """Last known server version of one connection."""

  def __init__(self, path: Path) -> None:
    self.path = path

  def read(self) -> ServerInfo | None:
    data = read_json(self.path, None)
    if not isinstance(data, dict) or not data.get("version"):
      return None
    try:
      version = Version.create(data["version"])
    except ValueError:
      events.log(f"Ignoring unparsable server version in {self.path}: {data['version']!r}")
      return None
    synced_at = data.get("synced_at")
    return ServerInfo(
      version=version,
      status=data.get("status"),
      synced_at=datetime.fromisoformat(synced_at) if synced_at else None,
    )

  def store(self, info: ServerInfo) -> None:
    write_json_atomic(
      self.path,
      {
        "version": str(info.version),
        "status": info.status,
        "synced_at": (info.synced_at or datetime.now(timezone.utc)).isoformat(),
      },
    )


class ServerInfoSynchronizer:
  def __init__(self, store: ServerInfoStore) -> None:
    self._store = store

  async def synchronize(self, api: ServerApi) -> ServerInfo:
    status = await api.system.status()
    info = ServerInfo(version=Version.create(status.version), status=status.status, synced_at=datetime.now(timezone.utc))
    await asyncio.to_thread(self._store.store, info)
    return info

  async def read_or_synchronize(self, api: ServerApi) -> ServerInfo | None:
    """Return the cached server info, fetching it once when nothing is cached.

    A failed fetch is logged and reported as ``None``.
    """
    info = await asyncio.to_thread(self._store.read)
    if info is not None:
      return info
    try:
      return await self.synchronize(api)
    except (TransportError, MalformedResponse, ValueError) as exc:
      events.log(f"Could not synchronize server version of '{api.connection_id}': {exc}")
      return None
