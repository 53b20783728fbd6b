"""Text generation client for stored OpenAI prompts."""

from __future__ import annotations

import time
from typing import Any

import openai
from common import config
from firebase_functions import logger
from openai import OpenAI


class Error(Exception):
  """Base class for exceptions in this module."""


class TextGenerationError(Error):
  """Exception raised when the text model fails to return text.

  Attributes:
      message -- explanation of the error
      code -- structured upstream error code, if any
      status_code -- upstream HTTP status, if any
  """

  def __init__(self,
               message: str,
               code: str | None = None,
               status_code: int | None = None):
    self.message = message
    self.code = code
    self.status_code = status_code
    super().__init__(message)


def prompt_variables(variables: dict[str, Any] | None) -> dict[str, str]:
  """Convert template variables to the string values the API accepts."""
  result = {}
  for key, value in (variables or {}).items():
    if value is None:
      continue
    if isinstance(value, bool):
      value = "true" if value else "false"
    result[key] = str(value)
  return result


class OpenAiPromptClient:
  """Base client that runs stored prompts through the OpenAI Responses API."""

  def __init__(self, label: str, model_client: OpenAI | None = None):
    self.label = label
    self._model_client = model_client

  @property
  def model_client(self) -> OpenAI:
    """Get the OpenAI client."""
    if self._model_client is None:
      self._model_client = OpenAI(api_key=config.get_openai_api_key())
    return self._model_client

  def _create_response(
    self,
    prompt_id: str,
    request_input: Any,
    variables: dict[str, Any] | None,
    error_cls: type[Exception],
  ) -> Any:
    """Call the Responses API, converting SDK errors to `error_cls`."""
    prompt: dict[str, Any] = {"id": str(getattr(prompt_id, "value", prompt_id))}
    string_variables = prompt_variables(variables)
    if string_variables:
      prompt["variables"] = string_variables

    try:
      return self.model_client.responses.create(prompt=prompt,
                                                input=request_input)
    except openai.APIStatusError as e:
      raise error_cls(
        f"{self.label} request failed with status {e.status_code}: {e.message}",
        code=getattr(e, "code", None),
        status_code=e.status_code,
      ) from e
    except openai.APIError as e:
      raise error_cls(f"{self.label} request failed: {e}",
                      code=getattr(e, "code", None)) from e


class TextGenerationClient(OpenAiPromptClient):
  """Generates text from a stored prompt and a free-text input."""

  def __init__(self, model_client: OpenAI | None = None):
    super().__init__(label="Text generation", model_client=model_client)

  def generate_text(
    self,
    prompt_id: str,
    input_text: str,
    variables: dict[str, Any] | None = None,
    extra_log_data: dict[str, Any] | None = None,
  ) -> str:
    """Generate text.

    Args:
        prompt_id: Stored prompt ID.
        input_text: The user input for the prompt. Must not be empty.
        variables: Template variables of the stored prompt.
        extra_log_data: Extra structured log fields.

    Returns:
        The raw text output. It is not guaranteed to be valid JSON.

    Raises:
        TextGenerationError: If the call fails or returns no text.
    """
    if not input_text or not input_text.strip():
      raise ValueError("input_text is required")

    start_time = time.perf_counter()
    response = self._create_response(prompt_id, input_text, variables,
                                     TextGenerationError)
    text = extract_output_text(response)
    if not text:
      raise TextGenerationError("No text content in OpenAI response")

    logger.info(
      f"Text generation done in {time.perf_counter() - start_time:.1f}s "
      f"({len(text)} chars)",
      extra={
        "json_fields": {
          "prompt_id": str(getattr(prompt_id, "value", prompt_id)),
          **(extra_log_data or {}),
        }
      },
    )
    return text


def extract_output_text(response: Any) -> str | None:
  """Return the first non-empty text content of a Responses API result."""
  for output in getattr(response, "output", None) or []:
    for content in getattr(output, "content", None) or []:
      text = getattr(content, "text", None)
      if isinstance(text, str) and text.strip():
        return text
  return None
