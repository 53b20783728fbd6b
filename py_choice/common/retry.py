"""Bounded retry with exponential backoff, and refinable error classification."""

from __future__ import annotations

import time
from typing import Any, Callable, TypeVar

from common import config
from firebase_functions import logger

_T = TypeVar("_T")

# Structured error codes from the image API that mean the prompt itself was
# the problem.
_REFINABLE_ERROR_CODES = frozenset({
  "content_policy_violation",
  "moderation_blocked",
  "safety_violation",
  "invalid_prompt",
  "image_generation_user_error",
})

# Fallback for errors that carry no structured code. Matched as
# case-insensitive substrings of the error message.
_REFINABLE_ERROR_PATTERNS = (
  "content policy",
  "content_policy",
  "policy violation",
  "safety",
  "inappropriate",
  "unsafe",
  "quality",
  "poor quality",
  "low quality",
  "invalid prompt",
  "prompt too",
  "prompt contains",
  "cannot generate",
  "unable to generate",
  "generation failed",
  "refused to generate",
  "rejected",
  "blocked",
  "filtered",
)


def error_code(error: BaseException) -> str | None:
  """Returns the structured upstream error code carried by an error, if any.

  Looks at the error itself and then at its chain of causes.
  """
  seen = set()
  current: BaseException | None = error
  while current is not None and id(current) not in seen:
    seen.add(id(current))
    code = getattr(current, "code", None)
    if isinstance(code, str) and code:
      return code
    current = current.__cause__ or current.__context__
  return None


def is_refinable_error(error: BaseException) -> bool:
  """Whether an error should trigger prompt refinement instead of a retry.

  A structured error code wins when present. Otherwise the error message is
  matched against a list of known content and quality refusals.
  """
  code = error_code(error)
  if code and code.lower() in _REFINABLE_ERROR_CODES:
    return True
  message = str(error).lower()
  return any(pattern in message for pattern in _REFINABLE_ERROR_PATTERNS)


def retry_with_backoff(
  operation: Callable[[], _T],
  *,
  max_retries: int = config.MAX_IMAGE_RETRIES,
  base_delay_ms: int = config.IMAGE_RETRY_BASE_DELAY_MS,
  is_non_retryable: Callable[[BaseException], bool] | None = None,
  operation_name: str = "operation",
  sleep_fn: Callable[[float], Any] = time.sleep,
  extra_log_data: dict[str, Any] | None = None,
) -> _T:
  """Run an operation, retrying failures with exponential backoff.

  Args:
      operation: Zero-argument callable to run.
      max_retries: Total number of attempts.
      base_delay_ms: Delay before the second attempt. Doubles after each
        further failure.
      is_non_retryable: Predicate for errors that are re-raised immediately
        without consuming an attempt.
      operation_name: Name used in log messages.
      sleep_fn: Sleep function taking seconds.
      extra_log_data: Extra structured log fields.

  Returns:
      The result of the first successful attempt.

  Raises:
      The last error once every attempt has failed, or the first
      non-retryable error.
  """
  if max_retries < 1:
    raise ValueError(f"max_retries must be at least 1, got {max_retries}")

  attempt = 1
  while True:
    try:
      result = operation()
      if attempt > 1:
        logger.info(f"{operation_name} succeeded on attempt {attempt}",
                    extra={"json_fields": extra_log_data or {}})
      return result
    except Exception as e:  # pylint: disable=broad-except
      if is_non_retryable and is_non_retryable(e):
        logger.warn(
          f"{operation_name} failed with non-retryable error: {e}",
          extra={"json_fields": extra_log_data or {}},
        )
        raise

      if attempt >= max_retries:
        logger.error(
          f"{operation_name} failed after {max_retries} attempts: {e}",
          extra={"json_fields": extra_log_data or {}},
        )
        raise

      delay_ms = base_delay_ms * (2**(attempt - 1))
      logger.warn(
        f"{operation_name} attempt {attempt}/{max_retries} failed: {e}\n"
        f"Retrying in {delay_ms}ms...",
        extra={"json_fields": extra_log_data or {}},
      )
      sleep_fn(delay_ms / 1000)
      attempt += 1
