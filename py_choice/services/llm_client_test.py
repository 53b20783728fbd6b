"""Tests for the llm_client module."""

import unittest
from types import SimpleNamespace

import httpx
import openai
from common import config
from services import llm_client


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


def _text_response(text):
  return SimpleNamespace(output=[
    SimpleNamespace(type="message",
                    content=[SimpleNamespace(type="output_text", text=text)])
  ])


def _status_error(status, body):
  request = httpx.Request("POST", "https://api.openai.com/v1/responses")
  response = httpx.Response(status, request=request)
  return openai.APIStatusError("upstream said no",
                               response=response,
                               body=body)


class TextGenerationClientTest(unittest.TestCase):

  def test_generate_text_sends_prompt_id_variables_and_input(self):
    fake = _FakeOpenAI(response=_text_response('{"titles": ["A"]}'))
    client = llm_client.TextGenerationClient(model_client=fake)

    text = client.generate_text(config.PromptId.STORY_TITLES_TEXT,
                                "Name: John",
                                variables={
                                  "age": 8,
                                  "gender": None,
                                  "retry": True
                                })

    self.assertEqual(text, '{"titles": ["A"]}')
    call = fake.responses.calls[0]
    self.assertEqual(call["input"], "Name: John")
    self.assertEqual(call["prompt"]["id"],
                     config.PromptId.STORY_TITLES_TEXT.value)
    self.assertEqual(call["prompt"]["variables"], {
      "age": "8",
      "retry": "true"
    })

  def test_generate_text_omits_empty_variables(self):
    fake = _FakeOpenAI(response=_text_response("hello"))
    client = llm_client.TextGenerationClient(model_client=fake)

    client.generate_text("pmpt_1", "input")

    self.assertNotIn("variables", fake.responses.calls[0]["prompt"])

  def test_generate_text_raises_on_missing_text(self):
    fake = _FakeOpenAI(response=_text_response("   "))
    client = llm_client.TextGenerationClient(model_client=fake)

    with self.assertRaises(llm_client.TextGenerationError):
      client.generate_text("pmpt_1", "input")

  def test_generate_text_raises_on_empty_output(self):
    fake = _FakeOpenAI(response=SimpleNamespace(output=[]))
    client = llm_client.TextGenerationClient(model_client=fake)

    with self.assertRaises(llm_client.TextGenerationError):
      client.generate_text("pmpt_1", "input")

  def test_generate_text_wraps_status_errors(self):
    error = _status_error(500, {"code": "server_error", "message": "boom"})
    client = llm_client.TextGenerationClient(model_client=_FakeOpenAI(
      error=error))

    with self.assertRaises(llm_client.TextGenerationError) as ctx:
      client.generate_text("pmpt_1", "input")

    self.assertEqual(ctx.exception.status_code, 500)
    self.assertEqual(ctx.exception.code, "server_error")
    self.assertIn("500", str(ctx.exception))

  def test_generate_text_requires_input(self):
    client = llm_client.TextGenerationClient(model_client=_FakeOpenAI())
    with self.assertRaises(ValueError):
      client.generate_text("pmpt_1", "  ")


if __name__ == '__main__':
  unittest.main()
