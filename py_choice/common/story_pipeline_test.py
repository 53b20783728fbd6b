"""Tests for the story_pipeline module."""

import json
import random

import pytest
from common import config, errors, models, story_pipeline


class FakeStore:
  """In-memory story and kid documents."""

  def __init__(self, kids=None, fail_progress=False):
    self.kids = dict(kids or {})
    self.stories = {}
    self.progress_history = []
    self.page_updates = []
    self.fail_progress = fail_progress
    self.incremented = []

  def get_kid(self, kid_id):
    data = self.kids.get(kid_id)
    return models.Kid.from_dict(data, key=kid_id) if data else None

  def increment_stories_created(self, kid_id):
    self.incremented.append(kid_id)
    return 1

  def create_story(self, user_id, kid_id, account_id, progress):
    story_id = f"story{len(self.stories) + 1}"
    self.stories[story_id] = {
      'id': story_id,
      'userId': user_id,
      'kidId': kid_id,
      'accountId': account_id,
      **progress.as_dict,
    }
    self.progress_history.append(progress.as_dict)
    return story_id

  def get_story(self, story_id):
    data = self.stories.get(story_id)
    return models.Story.from_dict(data, key=story_id) if data else None

  def update_progress(self, story_id, progress, extra_data=None):
    if self.fail_progress:
      raise RuntimeError("firestore unavailable")
    self.progress_history.append(progress.as_dict)
    self.stories[story_id].update({**progress.as_dict, **(extra_data or {})})

  def save_pages(self, story_id, pages, extra_data=None):
    self.stories[story_id]['pages'] = models.pages_to_list(pages)
    self.stories[story_id].update(extra_data or {})

  def update_page(self, story_id, page_index, fields,
                  expected_story_text=None):  # pylint: disable=unused-argument
    self.page_updates.append((page_index, fields))
    pages = self.stories[story_id]['pages']
    pages[page_index] = {**pages[page_index], **fields}
    return self.get_story(story_id)


class FakeTextClient:
  """Answers each prompt from canned titles and pages."""

  def __init__(self, titles, pages, failing_prompt_pages=()):
    self.titles = titles
    self.pages = pages
    self.failing_prompt_pages = set(failing_prompt_pages)
    self.calls = []

  def generate_text(self, prompt_id, input_text, variables=None,
                    extra_log_data=None):  # pylint: disable=unused-argument
    self.calls.append((prompt_id, input_text))
    if prompt_id == config.PromptId.STORY_TITLES_TEXT:
      return json.dumps({"titles": self.titles})
    if prompt_id == config.PromptId.STORY_PAGES_TEXT:
      return json.dumps({"pages": self.pages})
    if input_text in self.failing_prompt_pages:
      raise RuntimeError("prompt generation failed")
    return f"Illustration of: {input_text}"


class FakeImageClient:
  """Returns an image unless the prompt mentions a failing page."""

  def __init__(self, failing_text=None):
    self.failing_text = failing_text
    self.calls = 0

  def generate_image(self, prompt_id, input_blocks, variables=None,
                     extra_log_data=None):  # pylint: disable=unused-argument
    self.calls += 1
    prompt = input_blocks[0]["content"][0]["text"]
    if self.failing_text and self.failing_text in prompt:
      raise ConnectionError("image service unavailable")
    return "aW1hZ2U="


class FakeStorage:

  def __init__(self):
    self.saved = []

  def save_image(self, base64_image, account_id, user_id, story_id,
                 image_type, page_num=None):
    self.saved.append((base64_image, account_id, user_id, story_id,
                       image_type, page_num))
    return f"https://img/{story_id}/{image_type}-{page_num}.png"


class FakeNotifier:

  def __init__(self):
    self.sent = []

  def notify_story_ready(self, user_id, story_id, title, kid_name=None):
    self.sent.append((user_id, story_id, title, kid_name))
    return True


_TITLES = ["The Brave Day", "John and the Big Test", "A Kind Choice"]
_PAGES = [
  {"pageType": "normal", "storyText": "John wakes up nervous."},
  {"pageType": "good_choice", "text": "John shares his crayons."},
  {"pageNum": 7, "pageType": "bad_choice", "storyText": "John hides."},
]


def _kid(image_url="https://photos/john.png"):
  data = {"name": "John", "age": 6, "gender": "male"}
  if image_url:
    data["imageUrl"] = image_url
  return {"kid1": data}


def _pipeline(store, text=None, images=None, use_refinement=False):
  storage = FakeStorage()
  notifier = FakeNotifier()
  pipeline = story_pipeline.StoryPipeline(
    store,
    text or FakeTextClient(_TITLES, _PAGES),
    images or FakeImageClient(),
    storage,
    notifier,
    rng=random.Random(7),
    sleep_fn=lambda _s: None,
    use_refinement=use_refinement,
  )
  return pipeline, storage, notifier


def test_generate_full_story_completes_and_notifies():
  store = FakeStore(kids=_kid())
  pipeline, storage, notifier = _pipeline(store)

  result = pipeline.generate_full_story("user1", "kid1", "Afraid of school",
                                        "kindness", "hiding")

  assert result.title in _TITLES
  assert result.pages_count == 3
  assert result.images_generated == 3
  assert result.message == "Story generated successfully with 3/3 images"
  assert result.as_dict["success"] is True

  story = store.stories[result.story_id]
  assert story["title"] == result.title
  assert story["status"] == models.STATUS_COMPLETED
  assert story["progress"] == 100
  assert [p["pageNum"] for p in story["pages"]] == [0, 1, 2]
  assert [p["pageType"] for p in story["pages"]] == [
    "NORMAL", "GOOD_CHOICE", "BAD_CHOICE"
  ]
  assert story["pages"][1]["storyText"] == "John shares his crayons."
  assert all(p["selectedImageUrl"] for p in story["pages"])
  assert [s[5] for s in storage.saved] == [0, 1, 2]
  assert store.incremented == ["kid1"]
  assert notifier.sent == [("user1", result.story_id, result.title, "John")]


def test_generate_full_story_progress_is_monotone():
  store = FakeStore(kids=_kid())
  pipeline, _, _ = _pipeline(store)

  pipeline.generate_full_story("user1", "kid1", "Afraid of school")

  percents = [p["progress"] for p in store.progress_history]
  assert percents == sorted(percents)
  assert percents[0] == 5
  assert percents[-1] == 100
  assert store.progress_history[0]["status"] == "initializing"
  assert {10, 20, 40, 50, 60, 70, 95} <= set(percents)
  assert store.progress_history[-1]["status"] == "completed"


def test_generate_full_story_tolerates_single_image_failure():
  store = FakeStore(kids=_kid())
  images = FakeImageClient(failing_text="crayons")
  pipeline, _, notifier = _pipeline(store, images=images)

  result = pipeline.generate_full_story("user1", "kid1", "Afraid of school")

  assert [r.success for r in result.image_results] == [True, False, True]
  assert result.image_results[1].error == "image service unavailable"
  assert result.message == "Story generated successfully with 2/3 images"
  # The failing page used its whole retry budget.
  assert images.calls == 2 + config.MAX_IMAGE_RETRIES
  story = store.stories[result.story_id]
  assert story["status"] == models.STATUS_COMPLETED
  assert story["pages"][1]["selectedImageUrl"] == ""
  assert not notifier.sent


def test_generate_full_story_skips_image_for_page_without_prompt():
  store = FakeStore(kids=_kid())
  text = FakeTextClient(_TITLES,
                        _PAGES,
                        failing_prompt_pages=["John hides."])
  pipeline, _, notifier = _pipeline(store, text=text)

  result = pipeline.generate_full_story("user1", "kid1", "Afraid of school")

  assert result.image_results[2].as_dict == {
    "pageNum": 2,
    "success": False,
    "error": "No image prompt"
  }
  assert result.images_generated == 2
  assert not notifier.sent


def test_generate_full_story_without_photo_skips_images():
  store = FakeStore(kids=_kid(image_url=None))
  pipeline, storage, notifier = _pipeline(store)

  result = pipeline.generate_full_story("user1", "kid1", "Afraid of school")

  assert result.images_skipped
  assert result.pages_count == 3
  assert result.images_generated == 0
  assert "without a kid photo" in result.message
  story = store.stories[result.story_id]
  assert story["status"] == models.STATUS_COMPLETED
  assert story["progress"] == 100
  assert all(p["imagePrompt"] for p in story["pages"])
  assert not storage.saved
  assert not notifier.sent


def test_generate_full_story_keeps_existing_prompts():
  pages = [dict(p, imagePrompt=f"given prompt {i}") for i, p in enumerate(_PAGES)]
  text = FakeTextClient(_TITLES, pages)
  store = FakeStore(kids=_kid())
  pipeline, _, _ = _pipeline(store, text=text)

  pipeline.generate_full_story("user1", "kid1", "Afraid of school")

  prompt_calls = [c for c in text.calls
                  if c[0] == config.PromptId.STORY_IMAGE_PROMPT]
  assert not prompt_calls
  assert 70 in [p["progress"] for p in store.progress_history]


def test_generate_full_story_kid_not_found():
  store = FakeStore()
  pipeline, _, _ = _pipeline(store)

  with pytest.raises(errors.StoryError) as exc_info:
    pipeline.generate_full_story("user1", "missing", "Afraid of school")

  assert exc_info.value.kind == errors.ErrorKind.NOT_FOUND
  assert not store.stories


def test_generate_full_story_ignores_progress_write_failures():
  store = FakeStore(kids=_kid(), fail_progress=True)
  pipeline, _, notifier = _pipeline(store)

  result = pipeline.generate_full_story("user1", "kid1", "Afraid of school")

  assert result.images_generated == 3
  assert len(notifier.sent) == 1


def test_generate_full_story_chooses_title_with_rng():
  store = FakeStore(kids=_kid())
  pipeline, _, _ = _pipeline(store)

  result = pipeline.generate_full_story("user1", "kid1", "Afraid of school")

  assert result.title == random.Random(7).choice(_TITLES)


def test_generate_full_story_with_refinement_notifies_once():
  store = FakeStore(kids=_kid())
  text = FakeTextClient(_TITLES, _PAGES)
  pipeline, _, notifier = _pipeline(store, text=text, use_refinement=True)

  result = pipeline.generate_full_story("user1", "kid1", "Afraid of school")

  assert result.images_generated == 3
  assert len(notifier.sent) == 1
  # The refined prompt is written with the image.
  assert all("imagePrompt" in fields for _, fields in store.page_updates)
  story = store.stories[result.story_id]
  assert story["pages"][0]["imagePrompt"] == (
    "Illustration of: John wakes up nervous.")
  assert story["status"] == models.STATUS_COMPLETED


def test_generate_full_story_with_refinement_tolerates_failure():
  store = FakeStore(kids=_kid())
  images = FakeImageClient(failing_text="crayons")
  pipeline, _, notifier = _pipeline(store,
                                    images=images,
                                    use_refinement=True)

  result = pipeline.generate_full_story("user1", "kid1", "Afraid of school")

  assert [r.success for r in result.image_results] == [True, False, True]
  assert not notifier.sent
