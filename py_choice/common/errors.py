"""Errors surfaced to callers of the story functions."""

from enum import Enum


class ErrorKind(Enum):
  """Kind of a caller-facing error. Values match callable error codes."""
  UNAUTHENTICATED = "unauthenticated"
  INVALID_ARGUMENT = "invalid-argument"
  NOT_FOUND = "not-found"
  FAILED_PRECONDITION = "failed-precondition"
  OUT_OF_RANGE = "out-of-range"
  INTERNAL = "internal"


class Error(Exception):
  """Base class for exceptions in this module."""


class StoryError(Error):
  """A structured error with a kind tag and a human-readable message.

  Attributes:
      kind -- the error kind
      message -- explanation of the error
  """

  def __init__(self, kind: ErrorKind, message: str):
    self.kind = kind
    self.message = message
    super().__init__(message)

  def __str__(self) -> str:
    return self.message


def invalid_argument(message: str) -> StoryError:
  """Shorthand for an INVALID_ARGUMENT error."""
  return StoryError(ErrorKind.INVALID_ARGUMENT, message)


def not_found(message: str) -> StoryError:
  """Shorthand for a NOT_FOUND error."""
  return StoryError(ErrorKind.NOT_FOUND, message)
