from __future__ import annotations


class SchlichterError(Exception):
  """Base error carrying a machine readable kind next to the message."""

  kind = "error"

  def __init__(self, message: str, kind: str | None = None):
    self.kind = kind or self.kind
    self.message = message
    super().__init__(message)


class PreconditionError(SchlichterError):
  """A request referenced a connection or binding that does not exist."""

  kind = "precondition"


class UnknownConnection(PreconditionError):
  kind = "unknown_connection"

  def __init__(self, connection_id: str):
    self.connection_id = connection_id
    super().__init__(f"Connection with ID '{connection_id}' does not exist")


class UnknownBinding(PreconditionError):
  kind = "unknown_binding"

  def __init__(self, scope_id: str):
    self.scope_id = scope_id
    super().__init__(f"Binding for configuration scope ID '{scope_id}' does not exist")


class FindingNotFound(SchlichterError):
  kind = "not_found"

  def __init__(self, key: str):
    self.key = key
    super().__init__(f"No issue found with key '{key}'")


class MalformedResponse(SchlichterError):
  kind = "malformed_response"

  def __init__(self, message: str = "Unexpected body received"):
    super().__init__(message)


class TransportError(SchlichterError):
  """Network or protocol failure talking to the server."""

  kind = "transport"

  def __init__(self, message: str, status_code: int | None = None, url: str | None = None):
    self.status_code = status_code
    self.url = url
    super().__init__(message)


class OperationFailed(SchlichterError):
  """A status change, comment or anticipated transition push did not go through.

  The underlying failure is always available as ``cause`` (and ``__cause__``
  when raised with ``raise ... from``).
  """

  kind = "operation_failed"

  def __init__(self, message: str, cause: BaseException | None = None):
    self.cause = cause
    if cause is not None and str(cause):
      message = f"{message}: {cause}"
    super().__init__(message)


class StatusChangeFailed(OperationFailed):
  kind = "status_change_failed"


class CommentFailed(OperationFailed):
  kind = "comment_failed"
