"""Resolving, commenting and reopening findings on the server or locally.

Findings the server already knows are changed through the regular issue
endpoints. Findings only known locally are kept in the local-only store and
announced to the server as anticipated transitions: every push carries the
complete set of resolved local-only findings of a scope, never a delta, so a
failed or repeated push is repaired by the next one.
"""
from __future__ import annotations

import asyncio
import uuid
import weakref
from collections.abc import Iterable
from dataclasses import dataclass

import httpx

from schlichter import events
from schlichter.bindings import Binding, ConfigurationRepository, ConnectionRepository
from schlichter.capability import CapabilityResolver
from schlichter.config import Settings
from schlichter.connections import ServerApiProvider
from schlichter.errors import (
  CommentFailed,
  OperationFailed,
  SchlichterError,
  StatusChangeFailed,
  UnknownBinding,
  UnknownConnection,
)
from schlichter.findings import FindingMeta, LocalOnlyFinding, as_local_id, compute_resolved_set
from schlichter.gateway import ServerApi
from schlichter.resolution import ResolutionStatus, Transition, transition_for, vocabulary_for_transitions
from schlichter.storage import StorageService
from schlichter.telemetry import Telemetry

STATUS_CHANGE_PERMISSION_MISSING_REASON = "Marking an issue as resolved requires the 'Administer Issues' permission"
UNSUPPORTED_SERVER_VERSION_REASON = "Marking a local-only issue as resolved requires SonarQube 10.2+"


@dataclass(frozen=True)
class PermissionOutcome:
  permitted: bool
  reason: str | None
  allowed_statuses: tuple[ResolutionStatus, ...]

  @classmethod
  def from_statuses(cls, statuses: Iterable[ResolutionStatus], reason: str) -> PermissionOutcome:
    # no status available means not permitted or not supported
    allowed = tuple(statuses)
    permitted = bool(allowed)
    return cls(permitted=permitted, reason=None if permitted else reason, allowed_statuses=allowed)


@dataclass(frozen=True)
class ReopenOutcome:
  success: bool


class IssueService:
  def __init__(
    self,
    configuration: ConfigurationRepository,
    server_apis: ServerApiProvider,
    storage: StorageService,
    capabilities: CapabilityResolver,
    telemetry: Telemetry,
  ) -> None:
    self._configuration = configuration
    self._server_apis = server_apis
    self._storage = storage
    self._local_only = storage.local_only()
    self._capabilities = capabilities
    self._telemetry = telemetry
    # a lock lives only as long as some coroutine holds or waits for it
    self._scope_locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()

  def _scope_lock(self, scope_id: str) -> asyncio.Lock:
    """Serializes read, push and write of the local-only findings of one scope."""
    lock = self._scope_locks.get(scope_id)
    if lock is None:
      lock = asyncio.Lock()
      self._scope_locks[scope_id] = lock
    return lock

  async def _status_changed(self, rule_key: str) -> None:
    await asyncio.to_thread(self._telemetry.issue_status_changed, rule_key)

  def _bound_connection(self, scope_id: str) -> tuple[Binding, ServerApi] | None:
    binding = self._configuration.effective_binding(scope_id)
    if binding is None:
      return None
    api = self._server_apis.get_server_api(binding.connection_id)
    if api is None:
      return None
    return binding, api

  async def _push_resolved_set(
    self,
    api: ServerApi,
    binding: Binding,
    scope_id: str,
    *,
    include: LocalOnlyFinding | None = None,
    exclude: Iterable[uuid.UUID] = (),
    error: type[OperationFailed] = StatusChangeFailed,
  ) -> list[LocalOnlyFinding]:
    current = await asyncio.to_thread(self._local_only.load_all, scope_id)
    resolved = compute_resolved_set(current, include=include, exclude=exclude)
    try:
      await api.issues.anticipated_transitions(binding.project_key, resolved)
    except SchlichterError as exc:
      raise error(f"Could not send anticipated transitions for project {binding.project_key}", exc) from exc
    return resolved

  async def check_permission(self, connection_id: str, finding_key: str) -> PermissionOutcome:
    """Tell whether the user may resolve the finding and with which statuses.

    Args:
      connection_id: Connection the finding belongs to
      finding_key: Server issue key or local-only finding id

    Raises:
      UnknownConnection: no such connection is configured
      TransportError: searching the issue on the server failed
      FindingNotFound: the server does not know the issue key
      MalformedResponse: the search response could not be read
    """
    api = self._server_apis.get_server_api(connection_id)
    if api is None:
      raise UnknownConnection(connection_id)

    local_id = as_local_id(finding_key)
    if local_id is not None:
      finding = await asyncio.to_thread(self._local_only.find, local_id)
      if finding is not None:
        # There is no endpoint reporting transitions for findings the server has
        # never seen, the decision relies on the server version alone.
        capability = await self._capabilities.capability(api)
        return PermissionOutcome.from_statuses(capability.vocabulary, UNSUPPORTED_SERVER_VERSION_REASON)

    issue = await api.issues.search_by_key(finding_key)
    statuses = vocabulary_for_transitions(set(issue.transitions))
    return PermissionOutcome.from_statuses(statuses, STATUS_CHANGE_PERMISSION_MISSING_REASON)

  async def change_status(
    self,
    scope_id: str,
    finding_key: str,
    new_status: ResolutionStatus,
    is_taint: bool = False,
  ) -> None:
    """Resolve a finding with the given status.

    Without a binding or a live connection the change is dropped silently.

    Raises:
      StatusChangeFailed: the finding is unknown or the server rejected the change
    """
    bound = self._bound_connection(scope_id)
    if bound is None:
      return
    binding, api = bound
    transition = transition_for(new_status)

    server_findings = self._storage.binding(binding)
    if await asyncio.to_thread(server_findings.contains, finding_key, is_taint):
      try:
        await api.issues.change_status(finding_key, transition)
      except SchlichterError as exc:
        raise StatusChangeFailed(f"Could not change status of issue {finding_key}", exc) from exc
      meta = await asyncio.to_thread(server_findings.update_resolution, finding_key, is_taint, True)
      if meta is not None:
        await self._status_changed(meta.rule_key)
      return

    local_id = as_local_id(finding_key)
    if local_id is None:
      raise StatusChangeFailed(f"Issue key {finding_key} was not found")
    async with self._scope_lock(scope_id):
      finding = await asyncio.to_thread(self._local_only.find, local_id)
      if finding is None:
        raise StatusChangeFailed(f"Issue key {finding_key} was not found")
      finding.resolve(new_status)
      await self._push_resolved_set(api, binding, scope_id, include=finding, error=StatusChangeFailed)
      await asyncio.to_thread(self._local_only.store, scope_id, finding)
    await self._status_changed(finding.rule_key)

  async def add_comment(self, scope_id: str, finding_key: str, text: str) -> None:
    """Comment a resolved local-only finding, or any server issue.

    Raises:
      CommentFailed: the comment could not be sent to the server
    """
    local_id = as_local_id(finding_key)
    if local_id is not None and await self._comment_local_only(scope_id, local_id, text):
      return

    bound = self._bound_connection(scope_id)
    if bound is None:
      return
    _, api = bound
    try:
      await api.issues.add_comment(finding_key, text)
    except SchlichterError as exc:
      raise CommentFailed(f"Could not add comment to issue {finding_key}", exc) from exc

  async def _comment_local_only(self, scope_id: str, finding_id: uuid.UUID, text: str) -> bool:
    bound = self._bound_connection(scope_id)
    if bound is None:
      return False
    binding, api = bound
    async with self._scope_lock(scope_id):
      finding = await asyncio.to_thread(self._local_only.find, finding_id)
      # only a resolution can hold a comment
      if finding is None or finding.resolution is None:
        return False
      finding.resolution.comment = text
      await self._push_resolved_set(api, binding, scope_id, include=finding, error=CommentFailed)
      await asyncio.to_thread(self._local_only.store, scope_id, finding)
    return True

  async def reopen(self, scope_id: str, finding_id: str, is_taint: bool = False) -> ReopenOutcome:
    """Reopen a resolved finding.

    Returns:
      ``success=False`` when the scope has no live connection or the id is
      neither a known server issue nor a local-only id

    Raises:
      StatusChangeFailed: the server rejected the reopening
    """
    bound = self._bound_connection(scope_id)
    if bound is None:
      return ReopenOutcome(success=False)
    binding, api = bound

    server_findings = self._storage.binding(binding)
    if await asyncio.to_thread(server_findings.contains, finding_id, is_taint):
      try:
        await api.issues.change_status(finding_id, Transition.REOPEN)
      except SchlichterError as exc:
        raise StatusChangeFailed(f"Could not reopen issue {finding_id}", exc) from exc
      meta = await asyncio.to_thread(server_findings.update_resolution, finding_id, is_taint, False)
      if meta is not None:
        await self._status_changed(meta.rule_key)
      return ReopenOutcome(success=True)

    local_id = as_local_id(finding_id)
    if local_id is None:
      return ReopenOutcome(success=False)
    # an id missing from the store is already reopened
    async with self._scope_lock(scope_id):
      await self._push_resolved_set(api, binding, scope_id, exclude=(local_id,), error=StatusChangeFailed)
      await asyncio.to_thread(self._local_only.remove_one, local_id)
    return ReopenOutcome(success=True)

  async def reopen_all(self, scope_id: str, file_path: str) -> ReopenOutcome:
    """Drop every local-only finding of a file and tell the server.

    The push is best effort: the local cleanup happens even if it fails, and
    the outcome is always successful.
    """
    bound = self._bound_connection(scope_id)
    async with self._scope_lock(scope_id):
      if bound is not None:
        binding, api = bound
        for_file = await asyncio.to_thread(self._local_only.load_for_path, scope_id, file_path)
        try:
          await self._push_resolved_set(api, binding, scope_id, exclude=[f.id for f in for_file])
        except StatusChangeFailed as exc:
          events.log(f"reopen_all: push for {scope_id}:{file_path} failed, cleaning up locally anyway: {exc}")
      removed = await asyncio.to_thread(self._local_only.remove_for_path, scope_id, file_path)
    events.log(f"reopen_all: removed {removed} local-only findings for {scope_id}:{file_path}")
    return ReopenOutcome(success=True)

  async def check_anticipated_resolution_supported(self, scope_id: str) -> bool:
    """Tell whether the bound server accepts resolutions of local-only findings.

    Raises:
      UnknownBinding: the scope is not bound
      UnknownConnection: the bound connection was removed in the meantime
    """
    binding = self._configuration.effective_binding(scope_id)
    if binding is None:
      raise UnknownBinding(scope_id)
    api = self._server_apis.get_server_api(binding.connection_id)
    if api is None:
      raise UnknownConnection(binding.connection_id)
    return await asyncio.to_thread(self._capabilities.supports_anticipated_resolution, api)

  async def resync_scope(self, scope_id: str) -> bool:
    """Send the complete resolved set of a scope again.

    Returns:
      False when the scope has no live connection

    Raises:
      OperationFailed: the server did not accept the push
    """
    bound = self._bound_connection(scope_id)
    if bound is None:
      return False
    binding, api = bound
    async with self._scope_lock(scope_id):
      resolved = await self._push_resolved_set(api, binding, scope_id, error=OperationFailed)
    events.log(f"resync: sent {len(resolved)} resolved findings for {scope_id} ({binding.project_key})")
    return True

  async def record_local_only(self, scope_id: str, findings: Iterable[LocalOnlyFinding]) -> list[LocalOnlyFinding]:
    """Store findings the tracker could not match to a server issue.

    Findings recorded again keep their resolution, nothing is sent to the server.
    """
    async with self._scope_lock(scope_id):
      stored = await asyncio.to_thread(self._local_only.store_all, scope_id, list(findings))
    events.log(f"recorded {len(stored)} local-only findings for {scope_id}")
    return stored

  async def replace_server_findings(self, scope_id: str, findings: Iterable[FindingMeta]) -> Binding:
    """Replace the cached server issues of the project the scope is bound to.

    Raises:
      UnknownBinding: the scope is not bound
    """
    binding = self._configuration.effective_binding(scope_id)
    if binding is None:
      raise UnknownBinding(scope_id)
    await asyncio.to_thread(self._storage.binding(binding).replace_all, list(findings))
    return binding

  async def aclose(self) -> None:
    await self._server_apis.aclose()


def build_service(settings: Settings, client: httpx.AsyncClient | None = None) -> IssueService:
  """Wire an ``IssueService`` and its collaborators from settings."""
  storage = StorageService(settings.storage_dir)
  return IssueService(
    configuration=ConfigurationRepository.from_settings(settings),
    server_apis=ServerApiProvider(
      ConnectionRepository.from_settings(settings),
      client=client,
      timeout=settings.http_timeout,
    ),
    storage=storage,
    capabilities=CapabilityResolver(storage),
    telemetry=Telemetry(),
  )
