"""Tests for the image_client module."""

from types import SimpleNamespace

import httpx
import openai
import pytest
from common import retry
from services import image_client


class _FakeResponses:

  def __init__(self, response=None, error=None):
    self._response = response
    self._error = error
    self.calls = []

  def create(self, **kwargs):
    self.calls.append(kwargs)
    if self._error:
      raise self._error
    return self._response


class _FakeOpenAI:

  def __init__(self, response=None, error=None):
    self.responses = _FakeResponses(response=response, error=error)


def test_build_image_input_with_reference_image():
  blocks = image_client.build_image_input("A boy", "https://x/kid.png")
  assert blocks == [{
    "role":
    "user",
    "content": [
      {
        "type": "input_text",
        "text": "A boy"
      },
      {
        "type": "input_image",
        "image_url": "https://x/kid.png"
      },
    ],
  }]


def test_build_image_input_without_reference_image():
  blocks = image_client.build_image_input("A boy", None)
  assert blocks[0]["content"] == [{"type": "input_text", "text": "A boy"}]


def test_generate_image_returns_image_generation_call_result():
  response = SimpleNamespace(output=[
    SimpleNamespace(type="reasoning", result=None),
    SimpleNamespace(type="image_generation_call", result="BASE64DATA"),
  ])
  fake = _FakeOpenAI(response=response)
  client = image_client.ImageGenerationClient(model_client=fake)

  result = client.generate_image("pmpt_img",
                                 image_client.build_image_input("p", None),
                                 variables={"image_style": "3d Pixar"})

  assert result == "BASE64DATA"
  assert fake.responses.calls[0]["prompt"] == {
    "id": "pmpt_img",
    "variables": {
      "image_style": "3d Pixar"
    },
  }


def test_generate_image_raises_without_image_payload():
  response = SimpleNamespace(
    output=[SimpleNamespace(type="message", content=[])])
  client = image_client.ImageGenerationClient(model_client=_FakeOpenAI(
    response=response))

  with pytest.raises(image_client.ImageGenerationError):
    client.generate_image("pmpt_img", [])


def test_generate_image_keeps_upstream_code_for_classification():
  request = httpx.Request("POST", "https://api.openai.com/v1/responses")
  error = openai.BadRequestError(
    "Your request was rejected",
    response=httpx.Response(400, request=request),
    body={
      "code": "moderation_blocked",
      "message": "Your request was rejected"
    },
  )
  client = image_client.ImageGenerationClient(model_client=_FakeOpenAI(
    error=error))

  with pytest.raises(image_client.ImageGenerationError) as exc_info:
    client.generate_image("pmpt_img", [])

  assert exc_info.value.code == "moderation_blocked"
  assert exc_info.value.status_code == 400
  assert retry.is_refinable_error(exc_info.value)
