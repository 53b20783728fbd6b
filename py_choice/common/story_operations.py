"""Single-unit story generation operations.

Each operation generates one thing (titles, page text, an image prompt, or an
image) and, where it owns a destination, persists it. They are used by the
callable functions for targeted regeneration and by the full story pipeline.
"""

from __future__ import annotations

import json
import time
from typing import Any, Callable

from common import config, errors, image_refinement, models, response_parser
from firebase_functions import logger
from services import image_client

_DEFAULT_COVER_PROMPT = (
  'Create a {style} style cover image for the story titled: "{title}"')
_AVATAR_INSTRUCTION = "Create a Pixar-style avatar image for this child."


def build_titles_input(
  name: str,
  gender: str | None,
  problem_description: str,
  age: Any,
  advantages: str | None = None,
  disadvantages: str | None = None,
) -> str:
  """Input of the story titles prompt."""
  lines = [
    f"Name: {name}",
    f"Gender: {gender or ''}",
    f"Problem Description: {problem_description}",
    f"Age: {age} years old",
  ]
  if advantages and advantages.strip():
    lines.append(f"Advantages: {advantages}")
  if disadvantages and disadvantages.strip():
    lines.append(f"Disadvantages: {disadvantages}")
  return "\n".join(lines)


def build_pages_input(
  name: str,
  problem_description: str,
  title: str,
  age: Any,
  advantages: str | None,
  disadvantages: str | None,
) -> str:
  """Input of the story pages prompt."""
  return "\n".join([
    f"Name: {name}",
    f"Problem Description: {problem_description}",
    f"Story Title: {title}",
    f"Target Age: {age} years old",
    f"Moral Advantages: {advantages or ''}",
    f"Moral Disadvantages: {disadvantages or ''}",
  ])


def generate_story_titles(
  text_client: Any,
  *,
  name: str,
  gender: str | None,
  problem_description: str,
  age: Any,
  advantages: str | None = None,
  disadvantages: str | None = None,
  extra_log_data: dict[str, Any] | None = None,
) -> list[str]:
  """Generate candidate story titles.

  Raises:
      ResponseParseError: If no valid titles could be parsed.
  """
  text = text_client.generate_text(
    config.PromptId.STORY_TITLES_TEXT,
    build_titles_input(name, gender, problem_description, age, advantages,
                       disadvantages),
    extra_log_data=extra_log_data,
  )
  titles = response_parser.parse_titles(text)
  logger.info(f"Generated {len(titles)} story titles",
              extra={"json_fields": extra_log_data or {}})
  return titles


def generate_story_pages_text(
  text_client: Any,
  *,
  name: str,
  problem_description: str,
  title: str,
  age: Any,
  advantages: str | None,
  disadvantages: str | None,
  extra_log_data: dict[str, Any] | None = None,
) -> str:
  """Generate the raw page text of a story. Does not persist anything."""
  text = text_client.generate_text(
    config.PromptId.STORY_PAGES_TEXT,
    build_pages_input(name, problem_description, title, age, advantages,
                      disadvantages),
    extra_log_data=extra_log_data,
  )
  logger.info(f"Generated story text, length: {len(text)}",
              extra={"json_fields": extra_log_data or {}})
  return text


def generate_image_prompt(
  text_client: Any,
  store: Any,
  *,
  page_text: str,
  gender: str | None = None,
  age: int | None = None,
  story_id: str | None = None,
  page_index: int | None = None,
) -> str:
  """Generate the image prompt of a single page.

  If `story_id` and `page_index` are given, the prompt is also written to that
  page. That write is best-effort: failures are logged, not raised.
  """
  log_data = {"story_id": story_id, "page_num": page_index}
  image_prompt = image_refinement.generate_image_prompt(text_client,
                                                        page_text,
                                                        gender,
                                                        age,
                                                        extra_log_data=log_data)

  if story_id and page_index is not None:
    try:
      store.update_page(story_id, page_index, {'imagePrompt': image_prompt})
    except Exception as e:  # pylint: disable=broad-except
      logger.warn(f"Could not save image prompt for page {page_index}: {e}",
                  extra={"json_fields": log_data})
  return image_prompt


def generate_image_prompts_batch(text_client: Any,
                                 pages: list[dict]) -> dict[str, Any]:
  """Generate image prompts for several pages with one text call.

  Args:
      text_client: The text generation client.
      pages: Pages with at least `storyText` and `pageType`.

  Returns:
      Per-page results and counts, in the callable response shape.
  """
  for page in pages:
    if (not isinstance(page, dict) or not page.get('storyText')
        or not page.get('pageType')):
      raise errors.invalid_argument(
        "Each page must have storyText and pageType")

  logger.info(f"Generating image prompts for {len(pages)} pages")
  text = text_client.generate_text(
    config.PromptId.STORY_IMAGE_PROMPT,
    f"story_pages = {json.dumps(pages, ensure_ascii=False)}",
  )
  validated_pages, failed_count = response_parser.parse_prompt_pages(text)
  if failed_count:
    logger.error(f"Failed to generate image prompts for {failed_count} pages")

  return {
    'success': True,
    'results': [{
      **page, 'success': True
    } for page in validated_pages],
    'totalPages': len(pages),
    'successfulPages': len(validated_pages),
    'failedPages': failed_count,
    'pages': validated_pages,
  }


def notify_if_story_complete(
  store: Any,
  notifier: Any,
  story: models.Story,
  user_id: str,
) -> bool:
  """Send the story-ready email if every page of the story has an image.

  Returns:
      Whether an email was sent.
  """
  if not story.all_images_complete:
    logger.info(
      f"Story {story.key} has {story.num_images_complete}/"
      f"{len(story.pages)} images, not sending email",
      extra={"json_fields": {
        "story_id": story.key,
        "user_id": user_id
      }})
    return False

  kid_name = None
  if story.kid_id:
    try:
      kid = store.get_kid(story.kid_id)
      kid_name = kid.name if kid else None
    except Exception as e:  # pylint: disable=broad-except
      logger.warn(f"Could not load kid {story.kid_id} for story email: {e}")

  return notifier.notify_story_ready(story.user_id or user_id, story.key,
                                    story.title, kid_name)


def generate_image_prompt_and_image(
  *,
  store: Any,
  text_client: Any,
  image_gen_client: Any,
  storage: Any,
  notifier: Any,
  page_text: str,
  image_url: str,
  account_id: str,
  user_id: str,
  story_id: str,
  page_index: int,
  gender: str | None = None,
  age: int | None = None,
  sleep_fn: Callable[[float], Any] = time.sleep,
) -> dict[str, Any]:
  """Generate a page's prompt and image with refinement, then persist both.

  The page is updated in a transaction, after which the story is checked for
  completion so the story-ready email goes out as soon as the last page is
  done, whichever page that is.
  """
  log_data = {
    "story_id": story_id,
    "user_id": user_id,
    "page_num": page_index
  }
  loop = image_refinement.PromptRefinementLoop(text_client,
                                               image_gen_client,
                                               sleep_fn=sleep_fn)
  result = loop.run(page_text,
                    image_url,
                    gender=gender,
                    age=age,
                    extra_log_data=log_data)

  storage_url = storage.save_image(result.base64_image, account_id, user_id,
                                   story_id, 'page', page_index)
  story = store.update_page(story_id, page_index, {
    'selectedImageUrl': storage_url,
    'imagePrompt': result.image_prompt,
  })
  notify_if_story_complete(store, notifier, story, user_id)

  return {
    'success': True,
    'imagePrompt': result.image_prompt,
    'imageUrl': storage_url,
    'refinementAttempts': result.attempts,
  }


def generate_story_page_image(
  *,
  store: Any,
  image_gen_client: Any,
  storage: Any,
  image_prompt: str,
  image_url: str,
  account_id: str,
  user_id: str,
  story_id: str,
  page_index: int | None,
  expected_page_text: str | None = None,
  sleep_fn: Callable[[float], Any] = time.sleep,
) -> dict[str, Any]:
  """Generate a page image from a caller-supplied prompt.

  If `page_index` is None the image is stored but no page is updated.
  """
  base64_image = image_refinement.generate_page_image_with_retry(
    image_gen_client,
    image_prompt,
    image_url,
    sleep_fn=sleep_fn,
    extra_log_data={
      "story_id": story_id,
      "page_num": page_index
    },
  )
  storage_url = storage.save_image(base64_image, account_id, user_id, story_id,
                                   'page', page_index)
  if page_index is not None:
    store.update_page(story_id,
                      page_index, {'selectedImageUrl': storage_url},
                      expected_story_text=expected_page_text)
  else:
    logger.info(f"No page index for story {story_id}, skipping page update")
  return {'success': True, 'imageUrl': storage_url}


def generate_kid_avatar_image(
  *,
  store: Any,
  image_gen_client: Any,
  storage: Any,
  image_url: str,
  account_id: str,
  kid_id: str,
) -> dict[str, Any]:
  """Generate a kid's avatar from their photo and save it on the kid."""
  base64_image = image_gen_client.generate_image(
    config.PromptId.KID_AVATAR_IMAGE,
    image_client.build_image_input(_AVATAR_INSTRUCTION, image_url),
  )
  storage_url = storage.save_image(base64_image, account_id, kid_id, '',
                                   'avatar')
  store.update_kid(kid_id, {'avatarUrl': storage_url})
  return {'success': True, 'imageUrl': storage_url}


def generate_story_cover_image(
  *,
  store: Any,
  image_gen_client: Any,
  storage: Any,
  image_style: str,
  image_url: str,
  story_title: str,
  account_id: str,
  user_id: str,
  story_id: str,
  image_prompt: str | None = None,
) -> dict[str, Any]:
  """Generate a story cover in the given style and save it on the story."""
  if store.get_story(story_id) is None:
    raise errors.not_found(f"Story document not found: {story_id}")

  variables = {
    'image_style': image_style,
    'image_url': image_url,
    'story_title': story_title,
    'image_prompt': image_prompt
    or _DEFAULT_COVER_PROMPT.format(style=image_style, title=story_title),
  }
  logger.info(f"Generating {image_style} cover for story {story_id}",
              extra={"json_fields": {
                "story_id": story_id,
                "user_id": user_id
              }})
  base64_image = image_gen_client.generate_image(
    config.PromptId.STORY_COVER_IMAGE,
    image_client.build_image_input("", image_url),
    variables=variables,
  )
  storage_url = storage.save_image(base64_image, account_id, user_id, story_id,
                                   'cover')
  store.update_story(story_id, {'coverImageUrl': storage_url})
  return {'success': True, 'imageUrl': storage_url}
