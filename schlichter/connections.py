from __future__ import annotations

import httpx

from schlichter import events
from schlichter.bindings import ConnectionRepository
from schlichter.config import DEFAULT_HTTP_TIMEOUT_SECONDS
from schlichter.gateway import ServerApi


class ServerApiProvider:
  """Hands out ``ServerApi`` objects for configured connections.

  All of them share a single ``httpx.AsyncClient`` so connection pooling and
  timeouts are handled in one place.
  """

  def __init__(
    self,
    connections: ConnectionRepository,
    client: httpx.AsyncClient | None = None,
    timeout: float = DEFAULT_HTTP_TIMEOUT_SECONDS,
  ) -> None:
    self._connections = connections
    self._client = client or httpx.AsyncClient(timeout=timeout, follow_redirects=True)

  def get_server_api(self, connection_id: str) -> ServerApi | None:
    connection = self._connections.get(connection_id)
    if connection is None:
      events.log(f"Connection '{connection_id}' is gone")
      return None
    return ServerApi(connection, self._client)

  async def aclose(self) -> None:
    await self._client.aclose()
