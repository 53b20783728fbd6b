"""Cloud functions for story text generation and the full story pipeline."""

from __future__ import annotations

from common import notifications, story_operations, story_pipeline, utils
from firebase_functions import https_fn, logger, options
from functions.function_utils import (get_page_index_param, get_param,
                                      require_auth, to_https_error)
from services import (cloud_storage, email_client, firestore, image_client,
                      llm_client)


def _text_client() -> llm_client.TextGenerationClient:
  return llm_client.TextGenerationClient()


def _store() -> firestore.StoryStore:
  return firestore.StoryStore()


def _pipeline() -> story_pipeline.StoryPipeline:
  """Build the pipeline with production clients."""
  return story_pipeline.StoryPipeline(
    store=_store(),
    text_client=_text_client(),
    image_gen_client=image_client.ImageGenerationClient(),
    storage=cloud_storage.StoryImageStorage(),
    notifier=notifications.StoryReadyNotifier(email_client.EmailClient()),
  )


@https_fn.on_call(
  memory=options.MemoryOption.GB_2,
  timeout_sec=540,
)
def generate_full_story(req: https_fn.CallableRequest) -> dict:
  """Generate a complete story with titles, pages, prompts and images."""
  return _generate_full_story(req)


def _generate_full_story(req: https_fn.CallableRequest) -> dict:
  caller_uid = require_auth(req)
  user_id = get_param(req, 'userId') or caller_uid
  kid_id = get_param(req, 'kidId', required=True)
  problem_description = get_param(req, 'problemDescription', required=True)

  logger.info(f"Starting full story generation for kid {kid_id}",
              extra={"json_fields": {
                "user_id": user_id,
                "kid_id": kid_id
              }})
  try:
    result = _pipeline().generate_full_story(
      user_id,
      kid_id,
      problem_description,
      advantages=get_param(req, 'advantages'),
      disadvantages=get_param(req, 'disadvantages'),
    )
    return result.as_dict
  except Exception as e:  # pylint: disable=broad-except
    raise to_https_error(e, "Failed to generate full story") from e


@https_fn.on_call(
  memory=options.MemoryOption.GB_1,
  timeout_sec=540,
)
def generate_story_titles(req: https_fn.CallableRequest) -> dict:
  """Generate candidate titles for a story."""
  return _generate_story_titles(req)


def _generate_story_titles(req: https_fn.CallableRequest) -> dict:
  require_auth(req)
  name = get_param(req, 'name', required=True)
  gender = get_param(req, 'gender', required=True)
  problem_description = get_param(req, 'problemDescription', required=True)
  age = get_param(req, 'age', required=True)

  try:
    titles = story_operations.generate_story_titles(
      _text_client(),
      name=name,
      gender=gender,
      problem_description=problem_description,
      age=age,
      advantages=get_param(req, 'advantages'),
      disadvantages=get_param(req, 'disadvantages'),
    )
    return {"success": True, "titles": titles}
  except Exception as e:  # pylint: disable=broad-except
    raise to_https_error(e, "Failed to generate story titles") from e


@https_fn.on_call(
  memory=options.MemoryOption.GB_1,
  timeout_sec=540,
)
def generate_story_pages_text(req: https_fn.CallableRequest) -> dict:
  """Generate the raw page text of a story. The client saves the story."""
  return _generate_story_pages_text(req)


def _generate_story_pages_text(req: https_fn.CallableRequest) -> dict:
  require_auth(req)
  params = {
    'name': get_param(req, 'name', required=True),
    'problem_description': get_param(req, 'problemDescription',
                                     required=True),
    'title': get_param(req, 'title', required=True),
    'age': get_param(req, 'age', required=True),
    'advantages': get_param(req, 'advantages', required=True),
    'disadvantages': get_param(req, 'disadvantages', required=True),
  }
  story_id = get_param(req, 'storyId')

  try:
    text = story_operations.generate_story_pages_text(
      _text_client(),
      **params,
      extra_log_data={"story_id": story_id},
    )
    return {"success": True, "text": text, "storyId": story_id}
  except Exception as e:  # pylint: disable=broad-except
    raise to_https_error(e, "Failed to generate story pages text") from e


@https_fn.on_call(
  memory=options.MemoryOption.GB_1,
  timeout_sec=540,
)
def generate_story_image_prompt(req: https_fn.CallableRequest) -> dict:
  """Generate image prompts for one page, or for a list of pages.

  With `pages`, all prompts are generated with one call. Otherwise `pageText`
  is required, and if `storyId` and `updatePath` are given the prompt is also
  saved to the page.
  """
  return _generate_story_image_prompt(req)


def _generate_story_image_prompt(req: https_fn.CallableRequest) -> dict:
  require_auth(req)
  pages = get_param(req, 'pages')

  try:
    if pages is not None:
      if not isinstance(pages, list) or not pages:
        raise https_fn.HttpsError(
          code=https_fn.FunctionsErrorCode.INVALID_ARGUMENT,
          message="pages must be a non-empty array")
      return story_operations.generate_image_prompts_batch(
        _text_client(), pages)

    page_text = get_param(req, 'pageText', required=True)
    story_id = get_param(req, 'storyId')
    update_path = get_param(req, 'updatePath')
    page_index = None
    if story_id and update_path:
      page_index = utils.page_index_from_update_path(update_path)
      if page_index is None:
        page_index = get_page_index_param(req)

    image_prompt = story_operations.generate_image_prompt(
      _text_client(),
      _store(),
      page_text=page_text,
      gender=get_param(req, 'gender'),
      age=get_param(req, 'age'),
      story_id=story_id,
      page_index=page_index,
    )
    return {"success": True, "imagePrompt": image_prompt}
  except Exception as e:  # pylint: disable=broad-except
    raise to_https_error(e, "Failed to generate image prompt") from e
