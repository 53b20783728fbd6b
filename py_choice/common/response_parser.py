"""Lenient decoding of structured story output from the text model.

The text model is asked to return JSON but is not guaranteed to. It sometimes
wraps the JSON in prose, emits `{titles=[...]}` instead of an object, or is
cut off at the token limit halfway through the page array. The functions here
recover what can be recovered and raise `ResponseParseError` otherwise. They
never return a partially-typed result.
"""

from __future__ import annotations

import json
import re
from typing import Any, Iterator

from firebase_functions import logger

_MALFORMED_TITLES_RE = re.compile(r'\{\s*titles\s*=\s*\[([\s\S]*?)\]\s*\}')


class Error(Exception):
  """Base class for exceptions in this module."""


class ResponseParseError(Error):
  """Raised when model output cannot be coerced into the expected shape."""


def parse_titles(text: str) -> list[str]:
  """Parse a list of story titles.

  Accepts a bare JSON array of strings or an object with a `titles` array.

  Args:
      text: Raw model output.

  Returns:
      The non-empty list of titles, stripped of surrounding whitespace.

  Raises:
      ResponseParseError: If no titles can be extracted.
  """
  if not text or not text.strip():
    raise ResponseParseError("Empty titles response")

  candidate = text.strip()
  if not _looks_like_json(candidate):
    candidate = _last_balanced_span(text, "{", "}") or _last_balanced_span(
      text, "[", "]")
  if not candidate:
    raise ResponseParseError("No JSON found in titles response")

  parsed = _loads_titles(candidate)
  if parsed is None:
    cleaned = _trim_non_json(candidate)
    if cleaned != candidate:
      parsed = _loads_titles(cleaned)
  if parsed is None:
    raise ResponseParseError(f"Could not parse titles JSON: {candidate[:200]}")

  if isinstance(parsed, list):
    titles = parsed
  elif isinstance(parsed, dict) and "titles" in parsed:
    titles = parsed["titles"]
  else:
    raise ResponseParseError(
      "Expected an array or an object with a titles property")

  if not isinstance(titles, list):
    raise ResponseParseError("Titles must be an array")
  if not titles:
    raise ResponseParseError("No titles generated - empty array returned")
  if any(not isinstance(t, str) or not t.strip() for t in titles):
    raise ResponseParseError("Some generated titles are invalid or empty")

  return [t.strip() for t in titles]


def parse_pages(text: str) -> list[dict[str, Any]]:
  """Parse the page array of a generated story.

  If the output is not valid JSON, typically because it was truncated at the
  token limit, every complete page object before the cut is recovered and the
  trailing incomplete one is dropped.

  Args:
      text: Raw model output, normally `{"pages": [...]}`.

  Returns:
      The list of page dictionaries, in output order.

  Raises:
      ResponseParseError: If the shape is wrong or no page is recoverable.
  """
  if not text or not text.strip():
    raise ResponseParseError("Empty pages response")

  parsed = _loads_or_none(text.strip())
  if parsed is None:
    span = _last_balanced_span(text, "{", "}")
    if span and '"pages"' in span:
      parsed = _loads_or_none(span)

  if parsed is not None:
    if isinstance(parsed, dict):
      pages = parsed.get("pages")
    else:
      pages = parsed
    if not isinstance(pages, list):
      raise ResponseParseError("Story pages must be an array")
    if not pages:
      raise ResponseParseError("No pages found in story response")
    if any(not isinstance(p, dict) for p in pages):
      raise ResponseParseError("Every story page must be an object")
    return pages

  pages = list(_recover_page_objects(text))
  if not pages:
    raise ResponseParseError(
      "Could not extract any complete pages from the response. The response "
      "may be incomplete due to token limits.")
  logger.warn(f"Recovered {len(pages)} complete pages from truncated output")
  return pages


def repair_image_prompt(image_prompt: str, page_num: int) -> str:
  """Fix an image prompt that contains a whole serialized pages collection.

  Args:
      image_prompt: The `imagePrompt` value of one page.
      page_num: The page number to look up in the nested collection.

  Returns:
      The nested page's prompt if the prompt was a pages collection containing
      that page, otherwise the prompt unchanged.
  """
  if not image_prompt or not image_prompt.lstrip().startswith("{"):
    return image_prompt

  nested = _loads_or_none(image_prompt.strip())
  if not isinstance(nested, dict) or not isinstance(nested.get("pages"), list):
    return image_prompt

  for page in nested["pages"]:
    if (isinstance(page, dict) and page.get("pageNum") == page_num
        and isinstance(page.get("imagePrompt"), str)
        and page["imagePrompt"].strip()):
      logger.warn(f"Repaired image prompt for page {page_num} that contained "
                  "the full pages collection")
      return page["imagePrompt"]

  logger.error(f"Could not find page {page_num} in nested pages collection")
  return image_prompt


def parse_prompt_pages(text: str) -> tuple[list[dict[str, Any]], int]:
  """Parse a multi-page image prompt response.

  Args:
      text: Raw model output with a `pages` array of objects carrying
        `pageNum` and `imagePrompt`.

  Returns:
      A tuple of (pages with a usable prompt, number of pages without one).
      Each returned page has `pageNum`, `pageType`, `storyText` and a repaired
      `imagePrompt`.
  """
  valid_pages = []
  failed_count = 0
  for page in parse_pages(text):
    prompt = page.get("imagePrompt")
    if not isinstance(prompt, str) or not prompt.strip():
      logger.error(f"Missing imagePrompt for page {page.get('pageNum')}")
      failed_count += 1
      continue
    page_num = page.get("pageNum")
    valid_pages.append({
      "pageNum": page_num,
      "pageType": page.get("pageType"),
      "storyText": page.get("storyText") or page.get("text")
      or page.get("pageText"),
      "imagePrompt": repair_image_prompt(prompt, page_num),
    })
  return valid_pages, failed_count


def _looks_like_json(text: str) -> bool:
  return ((text.startswith("{") and text.endswith("}"))
          or (text.startswith("[") and text.endswith("]")))


def _loads_or_none(text: str) -> Any:
  try:
    return json.loads(text)
  except json.JSONDecodeError:
    return None


def _loads_titles(text: str) -> Any:
  """Decode titles JSON, rewriting `{titles=[...]}` into a real object."""
  if "titles" in text and "=" in text:
    text = _MALFORMED_TITLES_RE.sub(lambda m: '{"titles": [' + m.group(1) +
                                    ']}',
                                    text,
                                    count=1)
  return _loads_or_none(text)


def _trim_non_json(text: str) -> str:
  """Drop leading and trailing characters outside the outermost brackets."""
  text = text.strip()
  starts = [i for i in (text.find("{"), text.find("[")) if i >= 0]
  if starts:
    text = text[min(starts):]
  end = max(text.rfind("}"), text.rfind("]"))
  if end >= 0:
    text = text[:end + 1]
  return text


def _iter_balanced_spans(
  text: str,
  open_char: str,
  close_char: str,
  start: int = 0,
) -> Iterator[tuple[int, int]]:
  """Yield (start, end) of the top-level balanced spans after `start`.

  Walks the text one character at a time honoring JSON string and escape
  state, so brackets inside string values do not count. A span that is still
  open when the text ends is not yielded.
  """
  depth = 0
  span_start = -1
  in_string = False
  escaped = False
  for i in range(start, len(text)):
    char = text[i]
    if in_string:
      if escaped:
        escaped = False
      elif char == "\\":
        escaped = True
      elif char == '"':
        in_string = False
      continue
    if char == '"':
      in_string = True
    elif char == open_char:
      if depth == 0:
        span_start = i
      depth += 1
    elif char == close_char and depth > 0:
      depth -= 1
      if depth == 0 and span_start >= 0:
        yield span_start, i + 1
        span_start = -1


def _last_balanced_span(text: str, open_char: str, close_char: str) -> str:
  last = None
  for span in _iter_balanced_spans(text, open_char, close_char):
    last = span
  return text[last[0]:last[1]] if last else ""


def _recover_page_objects(text: str) -> Iterator[dict[str, Any]]:
  """Yield each complete object inside the (possibly truncated) page array."""
  key_pos = text.find('"pages"')
  array_start = text.find("[", key_pos if key_pos >= 0 else 0)
  if array_start < 0:
    return

  # Objects directly inside the array sit at depth 0 relative to its start.
  for start, end in _iter_balanced_spans(text, "{", "}", start=array_start + 1):
    page = _loads_or_none(text[start:end])
    if isinstance(page, dict):
      yield page
    else:
      logger.warn(f"Skipping unparseable page object at offset {start}")
