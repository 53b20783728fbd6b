"""Image generation client for stored OpenAI prompts."""

from __future__ import annotations

import time
from typing import Any

from firebase_functions import logger
from openai import OpenAI
from services import llm_client


class Error(Exception):
  """Base class for exceptions in this module."""


class ImageGenerationError(Error):
  """Exception raised when the image model fails to return an image.

  The upstream message is kept so refinable errors can be recognised.
  """

  def __init__(self,
               message: str,
               code: str | None = None,
               status_code: int | None = None):
    self.message = message
    self.code = code
    self.status_code = status_code
    super().__init__(message)


def build_image_input(text: str, image_url: str | None) -> list[dict]:
  """Build the role-tagged multi-part input for an image prompt."""
  content: list[dict[str, Any]] = [{"type": "input_text", "text": text or ""}]
  if image_url:
    content.append({"type": "input_image", "image_url": image_url})
  return [{"role": "user", "content": content}]


class ImageGenerationClient(llm_client.OpenAiPromptClient):
  """Generates images from a stored prompt and a reference image."""

  def __init__(self, model_client: OpenAI | None = None):
    super().__init__(label="Image generation", model_client=model_client)

  def generate_image(
    self,
    prompt_id: str,
    input_blocks: list[dict],
    variables: dict[str, Any] | None = None,
    extra_log_data: dict[str, Any] | None = None,
  ) -> str:
    """Generate an image.

    Args:
        prompt_id: Stored prompt ID.
        input_blocks: Role-tagged content blocks, see `build_image_input`.
        variables: Template variables of the stored prompt.
        extra_log_data: Extra structured log fields.

    Returns:
        The base64-encoded image.

    Raises:
        ImageGenerationError: If the call fails or returns no image.
    """
    start_time = time.perf_counter()
    response = self._create_response(prompt_id, input_blocks, variables,
                                     ImageGenerationError)

    image_generation_calls = [
      output for output in getattr(response, "output", None) or []
      if getattr(output, "type", None) == "image_generation_call"
    ]
    if not image_generation_calls or not image_generation_calls[0].result:
      raise ImageGenerationError("No image data returned from OpenAI")

    logger.info(
      f"Image generation done in {time.perf_counter() - start_time:.1f}s",
      extra={
        "json_fields": {
          "prompt_id": str(getattr(prompt_id, "value", prompt_id)),
          **(extra_log_data or {}),
        }
      },
    )
    return image_generation_calls[0].result
