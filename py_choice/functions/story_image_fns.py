"""Cloud functions for story page, cover and avatar images."""

from __future__ import annotations

from common import notifications, story_operations, utils
from firebase_functions import https_fn, logger, options
from functions.function_utils import (get_page_index_param, get_param,
                                      require_auth, to_https_error)
from services import (cloud_storage, email_client, firestore, image_client,
                      llm_client)


def _store() -> firestore.StoryStore:
  return firestore.StoryStore()


def _image_client() -> image_client.ImageGenerationClient:
  return image_client.ImageGenerationClient()


def _storage() -> cloud_storage.StoryImageStorage:
  return cloud_storage.StoryImageStorage()


def _page_index(req: https_fn.CallableRequest) -> int | None:
  """Page index from `pageNum`, falling back to `updatePath`."""
  page_index = get_page_index_param(req)
  if page_index is None:
    page_index = utils.page_index_from_update_path(get_param(req, 'updatePath'))
  return page_index


@https_fn.on_call(
  memory=options.MemoryOption.GB_2,
  timeout_sec=540,
)
def generate_image_prompt_and_image(req: https_fn.CallableRequest) -> dict:
  """Generate a page's image prompt and image, refining the prompt on failure."""
  return _generate_image_prompt_and_image(req)


def _generate_image_prompt_and_image(req: https_fn.CallableRequest) -> dict:
  require_auth(req)
  page_text = get_param(req, 'pageText', required=True)
  image_url = get_param(req, 'imageUrl', required=True)
  account_id = get_param(req, 'accountId', required=True)
  user_id = get_param(req, 'userId', required=True)
  story_id = get_param(req, 'storyId', required=True)
  page_index = _page_index(req)
  if page_index is None:
    raise https_fn.HttpsError(
      code=https_fn.FunctionsErrorCode.INVALID_ARGUMENT,
      message="pageNum or updatePath is required")

  try:
    return story_operations.generate_image_prompt_and_image(
      store=_store(),
      text_client=llm_client.TextGenerationClient(),
      image_gen_client=_image_client(),
      storage=_storage(),
      notifier=notifications.StoryReadyNotifier(email_client.EmailClient()),
      page_text=page_text,
      image_url=image_url,
      account_id=account_id,
      user_id=user_id,
      story_id=story_id,
      page_index=page_index,
      gender=get_param(req, 'gender'),
      age=get_param(req, 'age'),
    )
  except Exception as e:  # pylint: disable=broad-except
    raise to_https_error(e, "Failed to generate image prompt and image") from e


@https_fn.on_call(
  memory=options.MemoryOption.GB_1,
  timeout_sec=540,
)
def generate_story_page_image(req: https_fn.CallableRequest) -> dict:
  """Generate a page image from a given prompt and save it to the page."""
  return _generate_story_page_image(req)


def _generate_story_page_image(req: https_fn.CallableRequest) -> dict:
  require_auth(req)
  image_prompt = get_param(req, 'imagePrompt', required=True)
  image_url = get_param(req, 'imageUrl', required=True)
  account_id = get_param(req, 'accountId', required=True)
  user_id = get_param(req, 'userId', required=True)
  story_id = get_param(req, 'storyId', required=True)
  page_index = _page_index(req)

  logger.info(f"Generating page image for story {story_id}",
              extra={"json_fields": {
                "story_id": story_id,
                "page_num": page_index
              }})
  try:
    return story_operations.generate_story_page_image(
      store=_store(),
      image_gen_client=_image_client(),
      storage=_storage(),
      image_prompt=image_prompt,
      image_url=image_url,
      account_id=account_id,
      user_id=user_id,
      story_id=story_id,
      page_index=page_index,
      expected_page_text=get_param(req, 'pageText'),
    )
  except Exception as e:  # pylint: disable=broad-except
    raise to_https_error(e, "Failed to generate story page image") from e


@https_fn.on_call(
  memory=options.MemoryOption.GB_1,
  timeout_sec=540,
)
def generate_kid_avatar_image(req: https_fn.CallableRequest) -> dict:
  """Generate a kid's avatar from their photo."""
  return _generate_kid_avatar_image(req)


def _generate_kid_avatar_image(req: https_fn.CallableRequest) -> dict:
  require_auth(req)
  image_url = get_param(req, 'imageUrl', required=True)
  account_id = get_param(req, 'accountId', required=True)
  kid_id = get_param(req, 'userId', required=True)

  try:
    return story_operations.generate_kid_avatar_image(
      store=_store(),
      image_gen_client=_image_client(),
      storage=_storage(),
      image_url=image_url,
      account_id=account_id,
      kid_id=kid_id,
    )
  except Exception as e:  # pylint: disable=broad-except
    raise to_https_error(e, "Failed to generate kid avatar image") from e


@https_fn.on_call(
  memory=options.MemoryOption.GB_1,
  timeout_sec=540,
)
def generate_story_cover_image(req: https_fn.CallableRequest) -> dict:
  """Generate a story cover in a given style."""
  return _generate_story_cover_image(req)


def _generate_story_cover_image(req: https_fn.CallableRequest) -> dict:
  require_auth(req)
  image_style = get_param(req, 'imageStyle', required=True)
  image_url = get_param(req, 'imageUrl', required=True)
  story_title = get_param(req, 'storyTitle', required=True)
  account_id = get_param(req, 'accountId', required=True)
  user_id = get_param(req, 'userId', required=True)
  story_id = get_param(req, 'storyId', required=True)

  try:
    return story_operations.generate_story_cover_image(
      store=_store(),
      image_gen_client=_image_client(),
      storage=_storage(),
      image_style=image_style,
      image_url=image_url,
      story_title=story_title,
      account_id=account_id,
      user_id=user_id,
      story_id=story_id,
      image_prompt=get_param(req, 'imagePrompt'),
    )
  except Exception as e:  # pylint: disable=broad-except
    raise to_https_error(e, "Failed to generate story cover image") from e
