"""Utility functions for Cloud Functions."""

from typing import Any

from common import errors, utils
from firebase_functions import https_fn, logger

_ERROR_CODES = {
  errors.ErrorKind.UNAUTHENTICATED: https_fn.FunctionsErrorCode.UNAUTHENTICATED,
  errors.ErrorKind.INVALID_ARGUMENT:
  https_fn.FunctionsErrorCode.INVALID_ARGUMENT,
  errors.ErrorKind.NOT_FOUND: https_fn.FunctionsErrorCode.NOT_FOUND,
  errors.ErrorKind.FAILED_PRECONDITION:
  https_fn.FunctionsErrorCode.FAILED_PRECONDITION,
  errors.ErrorKind.OUT_OF_RANGE: https_fn.FunctionsErrorCode.OUT_OF_RANGE,
  errors.ErrorKind.INTERNAL: https_fn.FunctionsErrorCode.INTERNAL,
}


def require_auth(req: https_fn.CallableRequest) -> str:
  """Get the caller's uid, or fail with UNAUTHENTICATED."""
  if not req.auth or not req.auth.uid:
    raise https_fn.HttpsError(
      code=https_fn.FunctionsErrorCode.UNAUTHENTICATED,
      message="The function must be called while authenticated.")
  return req.auth.uid


def get_param(
  req: https_fn.CallableRequest,
  param_name: str,
  default: Any | None = None,
  required: bool = False,
) -> Any | None:
  """Get a parameter from the callable request data.

  Empty strings count as missing for required parameters.
  """
  data = req.data if isinstance(req.data, dict) else {}
  val = data.get(param_name, default)
  if required and (val is None or val == ""):
    raise https_fn.HttpsError(
      code=https_fn.FunctionsErrorCode.INVALID_ARGUMENT,
      message=f"Missing required parameter '{param_name}'")
  return val


def get_page_index_param(
  req: https_fn.CallableRequest,
  param_name: str = "pageNum",
) -> int | None:
  """Get a zero-based page index, or None if the parameter is absent.

  Raises:
      HttpsError: INVALID_ARGUMENT if present but not a non-negative integer.
  """
  value = get_param(req, param_name)
  if value is None:
    return None
  index = utils.coerce_page_index(value)
  if index is None:
    raise https_fn.HttpsError(
      code=https_fn.FunctionsErrorCode.INVALID_ARGUMENT,
      message=f"Invalid page number: {value}")
  return index


def to_https_error(e: Exception, context: str) -> https_fn.HttpsError:
  """Convert an exception into the error returned to the caller.

  Structured errors keep their kind and message. Anything else becomes
  INTERNAL with `context` prefixed to the message.
  """
  if isinstance(e, https_fn.HttpsError):
    return e
  if isinstance(e, errors.StoryError):
    return https_fn.HttpsError(code=_ERROR_CODES[e.kind], message=e.message)

  logger.error(f"{context}: {e}", exc_info=True)
  return https_fn.HttpsError(code=https_fn.FunctionsErrorCode.INTERNAL,
                             message=f"{context}: {e}")
