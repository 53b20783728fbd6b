"""Tests for story_fns."""

import json
from types import SimpleNamespace
from unittest.mock import Mock

import pytest
from common import errors, models
from firebase_functions import https_fn

from functions import story_fns


def _req(data, uid="user-1"):
  return SimpleNamespace(data=data,
                         auth=SimpleNamespace(uid=uid) if uid else None)


class FakeTextClient:

  def __init__(self, response):
    self.response = response
    self.calls = []

  def generate_text(self, prompt_id, input_text, variables=None,
                    extra_log_data=None):  # pylint: disable=unused-argument
    self.calls.append((prompt_id, input_text, variables))
    return self.response


@pytest.fixture(autouse=True)
def _quiet_logger(monkeypatch):
  monkeypatch.setattr(story_fns, 'logger', Mock())


def test_generate_full_story_requires_auth():
  with pytest.raises(https_fn.HttpsError) as exc_info:
    story_fns._generate_full_story(
      _req({"kidId": "k1", "problemDescription": "Fear"}, uid=None))

  assert exc_info.value.code == https_fn.FunctionsErrorCode.UNAUTHENTICATED


def test_generate_full_story_requires_kid_id():
  with pytest.raises(https_fn.HttpsError) as exc_info:
    story_fns._generate_full_story(
      _req({"problemDescription": "Fear"}))

  assert exc_info.value.code == https_fn.FunctionsErrorCode.INVALID_ARGUMENT


def test_generate_full_story_returns_result(monkeypatch):
  pipeline = Mock()
  pipeline.generate_full_story.return_value = models.FullStoryResult(
    story_id="s1",
    title="Brave Day",
    pages_count=2,
    image_results=[
      models.ImageResult(page_num=0, success=True, image_url="u0"),
      models.ImageResult(page_num=1, success=False, error="boom"),
    ],
    message="Story generated successfully with 1/2 images",
  )
  monkeypatch.setattr(story_fns, '_pipeline', lambda: pipeline)

  result = story_fns._generate_full_story(
    _req({
      "kidId": "k1",
      "problemDescription": "Fear",
      "advantages": "Brave"
    }))

  assert result["storyId"] == "s1"
  assert result["imagesGenerated"] == 1
  assert result["imageResults"][1] == {
    "pageNum": 1,
    "success": False,
    "error": "boom"
  }
  pipeline.generate_full_story.assert_called_once_with("user-1",
                                                       "k1",
                                                       "Fear",
                                                       advantages="Brave",
                                                       disadvantages=None)


def test_generate_full_story_maps_errors(monkeypatch):
  pipeline = Mock()
  pipeline.generate_full_story.side_effect = errors.not_found(
    "Kid not found: k1")
  monkeypatch.setattr(story_fns, '_pipeline', lambda: pipeline)

  with pytest.raises(https_fn.HttpsError) as exc_info:
    story_fns._generate_full_story(
      _req({
        "kidId": "k1",
        "problemDescription": "Fear"
      }))

  assert exc_info.value.code == https_fn.FunctionsErrorCode.NOT_FOUND


def test_generate_full_story_wraps_unexpected_errors(monkeypatch):
  pipeline = Mock()
  pipeline.generate_full_story.side_effect = RuntimeError("openai down")
  monkeypatch.setattr(story_fns, '_pipeline', lambda: pipeline)

  with pytest.raises(https_fn.HttpsError) as exc_info:
    story_fns._generate_full_story(
      _req({
        "kidId": "k1",
        "problemDescription": "Fear"
      }))

  assert exc_info.value.code == https_fn.FunctionsErrorCode.INTERNAL
  assert exc_info.value.message == (
    "Failed to generate full story: openai down")


def test_generate_story_titles(monkeypatch):
  text = FakeTextClient('{titles=["A", "B"]}')
  monkeypatch.setattr(story_fns, '_text_client', lambda: text)

  result = story_fns._generate_story_titles(
    _req({
      "name": "John",
      "gender": "male",
      "problemDescription": "Fear",
      "age": 6
    }))

  assert result == {"success": True, "titles": ["A", "B"]}


def test_generate_story_titles_parse_failure_is_internal(monkeypatch):
  monkeypatch.setattr(story_fns, '_text_client',
                      lambda: FakeTextClient("no titles here"))

  with pytest.raises(https_fn.HttpsError) as exc_info:
    story_fns._generate_story_titles(
      _req({
        "name": "John",
        "gender": "male",
        "problemDescription": "Fear",
        "age": 6
      }))

  assert exc_info.value.code == https_fn.FunctionsErrorCode.INTERNAL
  assert exc_info.value.message.startswith("Failed to generate story titles")


def test_generate_story_pages_text(monkeypatch):
  monkeypatch.setattr(story_fns, '_text_client',
                      lambda: FakeTextClient('{"pages": []}'))

  result = story_fns._generate_story_pages_text(
    _req({
      "name": "John",
      "problemDescription": "Fear",
      "title": "Brave Day",
      "age": 6,
      "advantages": "Brave",
      "disadvantages": "Hiding",
      "storyId": "s1",
    }))

  assert result == {"success": True, "text": '{"pages": []}', "storyId": "s1"}


def test_generate_story_image_prompt_saves_to_update_path(monkeypatch):
  store = Mock()
  monkeypatch.setattr(story_fns, '_store', lambda: store)
  monkeypatch.setattr(story_fns, '_text_client',
                      lambda: FakeTextClient(" A boy on a swing "))

  result = story_fns._generate_story_image_prompt(
    _req({
      "pageText": "John swings.",
      "storyId": "s1",
      "updatePath": "pages/2/imagePrompt",
    }))

  assert result == {"success": True, "imagePrompt": "A boy on a swing"}
  store.update_page.assert_called_once_with("s1", 2,
                                            {"imagePrompt": "A boy on a swing"})


def test_generate_story_image_prompt_batch(monkeypatch):
  response = json.dumps({
    "pages": [{
      "pageNum": 0,
      "pageType": "NORMAL",
      "storyText": "a",
      "imagePrompt": "p0"
    }]
  })
  monkeypatch.setattr(story_fns, '_text_client',
                      lambda: FakeTextClient(response))

  result = story_fns._generate_story_image_prompt(
    _req({"pages": [{
      "storyText": "a",
      "pageType": "NORMAL"
    }]}))

  assert result["successfulPages"] == 1
  assert result["failedPages"] == 0


def test_generate_story_image_prompt_batch_rejects_invalid_pages():
  with pytest.raises(https_fn.HttpsError) as exc_info:
    story_fns._generate_story_image_prompt(
      _req({"pages": [{
        "storyText": "a"
      }]}))

  assert exc_info.value.code == https_fn.FunctionsErrorCode.INVALID_ARGUMENT
