from __future__ import annotations


class TodoAppError(Exception):
  """Base error; ``status_code`` is the HTTP status the API answers with."""

  status_code = 500

  def __init__(self, message: str) -> None:
    super().__init__(message)
    self.message = message


class InvalidArgument(TodoAppError):
  status_code = 400


class Unauthenticated(TodoAppError):
  status_code = 401


class Forbidden(TodoAppError):
  status_code = 403


class NotFound(TodoAppError):
  status_code = 404


class Conflict(TodoAppError):
  status_code = 409


class PayloadTooLarge(TodoAppError):
  status_code = 413


class RateLimited(TodoAppError):
  status_code = 429

  def __init__(self, message: str, *, retry_after: int) -> None:
    super().__init__(message)
    self.retry_after = retry_after


class UpstreamError(TodoAppError):
  """A key-management, storage or mail call failed or timed out."""

  status_code = 500


class DecryptError(UpstreamError):
  pass


class Internal(TodoAppError):
  status_code = 500
