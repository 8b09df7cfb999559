"""Client for the server Web API endpoints used for issue resolution."""
from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

import httpx

from schlichter.config import ConnectionConfig
from schlichter.errors import FindingNotFound, MalformedResponse, TransportError
from schlichter.findings import LocalOnlyFinding
from schlichter.resolution import Transition

SEARCH_PATH = "/api/issues/search"
DO_TRANSITION_PATH = "/api/issues/do_transition"
ADD_COMMENT_PATH = "/api/issues/add_comment"
ANTICIPATED_TRANSITIONS_PATH = "/api/issues/anticipated_transitions"
SYSTEM_STATUS_PATH = "/api/system/status"


@dataclass(frozen=True)
class ServerIssue:
  key: str
  transitions: tuple[str, ...]


@dataclass(frozen=True)
class ServerStatus:
  version: str
  status: str | None = None
  server_id: str | None = None


class ServerApi:
  """One server connection on top of a shared ``httpx.AsyncClient``."""

  def __init__(self, connection: ConnectionConfig, client: httpx.AsyncClient) -> None:
    self.connection = connection
    self._client = client
    self.issues = IssueApi(self)
    self.system = SystemApi(self)

  @property
  def connection_id(self) -> str:
    return self.connection.id

  @property
  def is_cloud(self) -> bool:
    return self.connection.is_cloud

  @property
  def organization(self) -> str | None:
    return self.connection.organization

  def _headers(self) -> dict[str, str]:
    headers = {"Accept": "application/json"}
    if self.connection.token:
      headers["Authorization"] = f"Bearer {self.connection.token}"
    return headers

  async def request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
    url = self.connection.url + path
    try:
      response = await self._client.request(method, url, headers=self._headers(), **kwargs)
      response.raise_for_status()
    except httpx.HTTPStatusError as exc:
      status = exc.response.status_code
      raise TransportError(f"{method} {path} failed with HTTP {status}", status_code=status, url=url) from exc
    except httpx.RequestError as exc:
      raise TransportError(f"{method} {path} failed: {exc}", url=url) from exc
    return response


def _json_body(response: httpx.Response) -> Any:
  try:
    return response.json()
  except ValueError as exc:
    raise MalformedResponse() from exc


class IssueApi:
  def __init__(self, api: ServerApi) -> None:
    self._api = api

  async def search_by_key(self, key: str) -> ServerIssue:
    """Fetch one issue together with the transitions available to the caller.

    Raises:
      TransportError: the request itself failed
      FindingNotFound: the server returned no issue for the key
      MalformedResponse: the body could not be interpreted
    """
    params = {"issues": key, "additionalFields": "transitions", "ps": 1, "p": 1}
    if self._api.is_cloud and self._api.organization:
      params["organization"] = self._api.organization
    response = await self._api.request("GET", SEARCH_PATH, params=params)
    body = _json_body(response)
    if not isinstance(body, dict) or not isinstance(body.get("issues"), list):
      raise MalformedResponse()
    issues = body["issues"]
    if not issues:
      raise FindingNotFound(key)
    if not all(isinstance(i, dict) for i in issues):
      raise MalformedResponse()
    issue = next((i for i in issues if i.get("key") == key), None)
    if issue is None:
      raise FindingNotFound(key)
    transitions = issue.get("transitions", [])
    if not isinstance(transitions, list) or not all(isinstance(t, str) for t in transitions):
      raise MalformedResponse()
    return ServerIssue(key=key, transitions=tuple(transitions))

  async def change_status(self, key: str, transition: Transition) -> None:
    await self._api.request("POST", DO_TRANSITION_PATH, data={"issue": key, "transition": transition.code})

  async def add_comment(self, key: str, text: str) -> None:
    await self._api.request("POST", ADD_COMMENT_PATH, data={"issue": key, "text": text})

  async def anticipated_transitions(self, project_key: str, findings: Iterable[LocalOnlyFinding]) -> None:
    """Send the complete list of locally resolved findings of a project."""
    payload = [finding.to_anticipated_transition() for finding in findings]
    await self._api.request(
      "POST",
      ANTICIPATED_TRANSITIONS_PATH,
      params={"projectKey": project_key},
      json=payload,
    )


class SystemApi:
  def __init__(self, api: ServerApi) -> None:
    self._api = api

  async def status(self) -> ServerStatus:
    response = await self._api.request("GET", SYSTEM_STATUS_PATH)
    body = _json_body(response)
    if not isinstance(body, dict) or not isinstance(body.get("version"), str):
      raise MalformedResponse()
    return ServerStatus(version=body["version"], status=body.get("status"), server_id=body.get("id"))
