import uuid
from dataclasses import dataclass
from unittest.mock import AsyncMock, MagicMock

import pytest

from schlichter import events
from schlichter.bindings import Binding, ConfigurationRepository
from schlichter.capability import CapabilityResolver
from schlichter.config import ScopeConfig
from schlichter.findings import LocalOnlyFinding, LocalOnlyResolution
from schlichter.gateway import ServerStatus
from schlichter.server_info import ServerInfo, ServerInfoStore
from schlichter.service import IssueService
from schlichter.storage import ServerFindingStore, StorageService
from schlichter.telemetry import Telemetry
from schlichter.version import Version

CONNECTION_ID = "conn"
PROJECT_KEY = "acme-backend"
SCOPE_ID = "scope"


@pytest.fixture(autouse=True)
def isolated_events(tmp_path, monkeypatch):
  monkeypatch.setattr(events, "EVENTS", tmp_path / "events")
  monkeypatch.setattr(events, "LOGS", tmp_path / "logs")


class FakeServerApi:
  """Stands in for ServerApi, every remote call is an AsyncMock."""

  def __init__(self, connection_id=CONNECTION_ID, is_cloud=False, organization=None):
    self.connection_id = connection_id
    self.is_cloud = is_cloud
    self.organization = organization
    self.issues = MagicMock()
    self.issues.search_by_key = AsyncMock()
    self.issues.change_status = AsyncMock(return_value=None)
    self.issues.add_comment = AsyncMock(return_value=None)
    self.issues.anticipated_transitions = AsyncMock(return_value=None)
    self.system = MagicMock()
    self.system.status = AsyncMock(return_value=ServerStatus(version="10.4"))


class FakeServerApiProvider:
  def __init__(self, apis=None):
    self.apis = dict(apis or {})
    self.closed = False

  def get_server_api(self, connection_id):
    return self.apis.get(connection_id)

  async def aclose(self):
    self.closed = True


@dataclass
class Harness:
  service: IssueService
  configuration: ConfigurationRepository
  storage: StorageService
  api: FakeServerApi
  provider: FakeServerApiProvider
  telemetry: MagicMock

  def set_server_version(self, version, connection_id=CONNECTION_ID):
    store = ServerInfoStore(self.storage.server_info_path(connection_id))
    store.store(ServerInfo(version=Version.create(version)))

  def add_local_only(self, file_path="src/app.py", rule_key="python:S1481", status=None, comment=None, scope_id=SCOPE_ID):
    finding = LocalOnlyFinding(
      id=uuid.uuid4(),
      scope_id=scope_id,
      file_path=file_path,
      rule_key=rule_key,
      message="Remove the unused local variable",
      line=12,
      line_hash="5d41402abc4b2a76b9719d911017c592",
    )
    if status is not None:
      finding.resolution = LocalOnlyResolution(status=status, comment=comment)
    self.storage.local_only().store(scope_id, finding)
    return finding

  def server_findings(self) -> ServerFindingStore:
    return self.storage.binding(Binding(CONNECTION_ID, PROJECT_KEY))

  def pushed(self, call_index=-1):
    call = self.api.issues.anticipated_transitions.call_args_list[call_index]
    return call.args[0], call.args[1]


@pytest.fixture
def make_api():
  return FakeServerApi


@pytest.fixture
def harness(tmp_path):
  storage = StorageService(tmp_path / "storage")
  api = FakeServerApi()
  provider = FakeServerApiProvider({CONNECTION_ID: api})
  configuration = ConfigurationRepository(
    {
      SCOPE_ID: ScopeConfig(SCOPE_ID, connection=CONNECTION_ID, project_key=PROJECT_KEY),
      "child": ScopeConfig("child", parent=SCOPE_ID),
      "unbound": ScopeConfig("unbound"),
      "orphan": ScopeConfig("orphan", connection="gone", project_key="other"),
    }
  )
  telemetry = MagicMock(spec=Telemetry)
  service = IssueService(
    configuration=configuration,
    server_apis=provider,
    storage=storage,
    capabilities=CapabilityResolver(storage),
    telemetry=telemetry,
  )
  return Harness(
    service=service,
    configuration=configuration,
    storage=storage,
    api=api,
    provider=provider,
    telemetry=telemetry,
  )
