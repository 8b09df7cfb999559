import hmac

API_KEY_HEADER = "X-API-Key"

# HTTP status per ApiKeyError.kind
_STATUS_BY_KIND = {
  "not_configured": 503,
  "missing": 401,
  "invalid": 401,
}


class ApiKeyError(Exception):
  """Raised when a request does not carry the expected API key."""
  def __init__(self, kind: str, message: str):
    self.kind = kind
    self.message = message
    super().__init__(message)

  @property
  def status_code(self) -> int:
    return _STATUS_BY_KIND.get(self.kind, 401)


def check_api_key(provided: str | None, expected: str | None) -> None:
  """
  Validate the API key sent by a client.
  Raises ApiKeyError if validation fails.
  Fail-closed: fails if expected key is not set.
  """
  if not expected:
    raise ApiKeyError("not_configured", "API Key is not configured on server")

  if not provided:
    raise ApiKeyError("missing", "API Key is missing")

  if not hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8")):
    raise ApiKeyError("invalid", "Invalid API Key")
