"""Image prompt generation and image generation with prompt refinement.

Some image failures are caused by the prompt itself: a content policy refusal,
a safety filter, or an unusable result. Retrying the same prompt cannot fix
those. `PromptRefinementLoop` instead asks the text model for a new prompt,
passing it the previous error, and tries again a bounded number of times.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Callable

from common import config, retry
from firebase_functions import logger
from services import image_client


class Error(Exception):
  """Base class for exceptions in this module."""


class RefinementExhaustedError(Error):
  """Raised when every refinement attempt failed with a refinable error."""

  def __init__(self, message: str, attempts: int):
    self.attempts = attempts
    super().__init__(message)


@dataclass(kw_only=True)
class RefinementResult:
  """Final prompt and image of a successful refinement loop."""
  image_prompt: str
  base64_image: str
  attempts: int


def image_prompt_variables(
  page_text: str,
  gender: str | None = None,
  age: int | None = None,
  previous_error: str | None = None,
  attempt_number: int | None = None,
) -> dict[str, Any]:
  """Template variables of the image prompt generator."""
  variables: dict[str, Any] = {'page_text': page_text}
  if gender:
    variables['gender'] = gender
  if age is not None:
    variables['age'] = age
  if previous_error and attempt_number:
    variables['previous_error'] = previous_error
    variables['attempt_number'] = attempt_number
  return variables


def generate_image_prompt(
  text_client: Any,
  page_text: str,
  gender: str | None = None,
  age: int | None = None,
  previous_error: str | None = None,
  attempt_number: int | None = None,
  extra_log_data: dict[str, Any] | None = None,
) -> str:
  """Generate an image prompt for one page of story text."""
  if previous_error and attempt_number:
    logger.info(
      f"Generating refined image prompt (attempt {attempt_number}) after: "
      f"{previous_error[:100]}",
      extra={"json_fields": extra_log_data or {}})
  prompt = text_client.generate_text(
    config.PromptId.STORY_IMAGE_PROMPT,
    page_text,
    variables=image_prompt_variables(page_text, gender, age, previous_error,
                                     attempt_number),
    extra_log_data=extra_log_data,
  )
  return prompt.strip()


def generate_page_image_with_retry(
  image_gen_client: Any,
  image_prompt: str,
  image_url: str,
  *,
  sleep_fn: Callable[[float], Any] = time.sleep,
  max_retries: int = config.MAX_IMAGE_RETRIES,
  is_non_retryable: Callable[[BaseException], bool] | None = None,
  extra_log_data: dict[str, Any] | None = None,
) -> str:
  """Generate a page image from a fixed prompt with bounded retries.

  Returns:
      The base64-encoded image.
  """
  return retry.retry_with_backoff(
    lambda: image_gen_client.generate_image(
      config.PromptId.STORY_PAGE_IMAGE,
      image_client.build_image_input(image_prompt, image_url),
      extra_log_data=extra_log_data,
    ),
    max_retries=max_retries,
    base_delay_ms=config.IMAGE_RETRY_BASE_DELAY_MS,
    is_non_retryable=is_non_retryable,
    operation_name="Page image generation",
    sleep_fn=sleep_fn,
    extra_log_data=extra_log_data,
  )


class PromptRefinementLoop:
  """Generates a page image, rewriting the prompt after refinable failures."""

  def __init__(
    self,
    text_client: Any,
    image_gen_client: Any,
    *,
    max_attempts: int = config.MAX_REFINEMENT_ATTEMPTS,
    backoff_ms: int = config.REFINEMENT_BACKOFF_MS,
    sleep_fn: Callable[[float], Any] = time.sleep,
    is_refinable: Callable[[BaseException], bool] = retry.is_refinable_error,
  ):
    self.text_client = text_client
    self.image_gen_client = image_gen_client
    self.max_attempts = max_attempts
    self.backoff_ms = backoff_ms
    self.sleep_fn = sleep_fn
    self.is_refinable = is_refinable

  def run(
    self,
    page_text: str,
    image_url: str,
    gender: str | None = None,
    age: int | None = None,
    extra_log_data: dict[str, Any] | None = None,
  ) -> RefinementResult:
    """Generate a prompt and an image for one page.

    Args:
        page_text: The page's story text.
        image_url: Reference photo of the kid.
        gender: Kid's gender, passed to the prompt generator.
        age: Kid's age, passed to the prompt generator.
        extra_log_data: Extra structured log fields.

    Returns:
        The final prompt and image.

    Raises:
        RefinementExhaustedError: If every attempt failed with a refinable
          error.
        Exception: A non-refinable error on the first attempt, or any
          non-refinable or prompt generation error on the last attempt.
    """
    last_error: BaseException | None = None
    for attempt in range(1, self.max_attempts + 1):
      log_data = {**(extra_log_data or {}), "refinement_attempt": attempt}

      try:
        image_prompt = generate_image_prompt(
          self.text_client,
          page_text,
          gender,
          age,
          previous_error=str(last_error) if last_error else None,
          attempt_number=attempt if last_error else None,
          extra_log_data=log_data,
        )
      except Exception as e:  # pylint: disable=broad-except
        logger.error(f"Image prompt generation failed on attempt {attempt}: {e}",
                     extra={"json_fields": log_data})
        if self._is_final_failure(e, attempt):
          raise
        last_error = e
        self._backoff(attempt)
        continue

      try:
        base64_image = generate_page_image_with_retry(
          self.image_gen_client,
          image_prompt,
          image_url,
          sleep_fn=self.sleep_fn,
          is_non_retryable=self.is_refinable,
          extra_log_data=log_data,
        )
      except Exception as e:  # pylint: disable=broad-except
        if not self.is_refinable(e):
          logger.error(
            f"Image generation failed on attempt "
            f"{attempt}/{self.max_attempts}: {e}",
            extra={"json_fields": log_data})
          if self._is_final_failure(e, attempt):
            raise
          last_error = e
          self._backoff(attempt)
          continue

        last_error = e
        logger.warn(
          f"Image generation failed with refinable error on attempt "
          f"{attempt}/{self.max_attempts}: {e}",
          extra={"json_fields": log_data})
        if attempt >= self.max_attempts:
          raise RefinementExhaustedError(
            f"Image generation failed after {self.max_attempts} prompt "
            f"refinements: {e}",
            attempts=attempt,
          ) from e
        self._backoff(attempt)
        continue

      if attempt > 1:
        logger.info(f"Image generated after {attempt} prompt refinements",
                    extra={"json_fields": log_data})
      return RefinementResult(image_prompt=image_prompt,
                              base64_image=base64_image,
                              attempts=attempt)

    # Unreachable with max_attempts >= 1.
    raise RefinementExhaustedError("No refinement attempts were made",
                                   attempts=0)

  def _is_final_failure(self, error: BaseException, attempt: int) -> bool:
    """Whether an error ends the loop instead of starting another attempt.

    A non-refinable error on the first attempt is raised at once. After that,
    any error is retried with a refined prompt until the last attempt.
    """
    if attempt >= self.max_attempts:
      return True
    return attempt == 1 and not self.is_refinable(error)

  def _backoff(self, attempt: int) -> None:
    self.sleep_fn(self.backoff_ms * attempt / 1000)
