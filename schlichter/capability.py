"""What a server connection can do with locally resolved findings."""
from __future__ import annotations

import asyncio
from dataclasses import dataclass

from schlichter.gateway import ServerApi
from schlichter.resolution import CURRENT_VOCABULARY, LEGACY_VOCABULARY, ResolutionStatus
from schlichter.server_info import ServerInfoStore, ServerInfoSynchronizer
from schlichter.storage import StorageService
from schlichter.version import Version

ANTICIPATED_TRANSITIONS_MIN_VERSION = Version.create("10.2")
# Won't Fix became Accept with this version
ACCEPT_TRANSITION_MIN_VERSION = Version.create("10.4")


@dataclass(frozen=True)
class ServerCapability:
  supports_anticipated_resolution: bool
  vocabulary: tuple[ResolutionStatus, ...] = ()


class CapabilityResolver:
  """Derives capabilities from the connection kind and the cached server version.

  The cloud product has its own version numbering, so none of the version
  checks below ever apply to it.
  """

  def __init__(self, storage: StorageService) -> None:
    self._storage = storage

  def _info_store(self, connection_id: str) -> ServerInfoStore:
    return ServerInfoStore(self._storage.server_info_path(connection_id))

  def supports_anticipated_resolution(self, api: ServerApi) -> bool:
    """Check the cached version only, an unknown version means no support."""
    if api.is_cloud:
      return False
    info = self._info_store(api.connection_id).read()
    if info is None:
      return False
    return info.version.satisfies_min_requirement(ANTICIPATED_TRANSITIONS_MIN_VERSION)

  async def vocabulary_for_local_only(self, api: ServerApi) -> tuple[ResolutionStatus, ...]:
    if api.is_cloud:
      return LEGACY_VOCABULARY
    synchronizer = ServerInfoSynchronizer(self._info_store(api.connection_id))
    info = await synchronizer.read_or_synchronize(api)
    if info is not None and info.version.satisfies_min_requirement(ACCEPT_TRANSITION_MIN_VERSION):
      return CURRENT_VOCABULARY
    return LEGACY_VOCABULARY

  async def capability(self, api: ServerApi) -> ServerCapability:
    supported = await asyncio.to_thread(self.supports_anticipated_resolution, api)
    if not supported:
      return ServerCapability(supports_anticipated_resolution=False)
    return ServerCapability(True, await self.vocabulary_for_local_only(api))
