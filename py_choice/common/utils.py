"""Utility functions"""

import datetime
import os
import re

_HEBREW_RE = re.compile('[\u0590-\u05FF]')
_UPDATE_PATH_PAGE_RE = re.compile(r'^pages/(\d+)(?:/|$)')


def contains_hebrew(text: str | None) -> bool:
  """Returns True if the text contains any Hebrew characters."""
  return bool(text) and _HEBREW_RE.search(text) is not None


def detect_language(*texts: str | None) -> str:
  """Returns 'he' if any of the texts contain Hebrew, else 'en'."""
  return 'he' if any(contains_hebrew(t) for t in texts) else 'en'


def page_index_from_update_path(update_path: str | None) -> int | None:
  """Extract the page index from a client update path like 'pages/3/imagePrompt'."""
  if not update_path:
    return None
  match = _UPDATE_PATH_PAGE_RE.match(update_path.strip())
  if not match:
    return None
  return int(match.group(1))


def coerce_page_index(value) -> int | None:
  """Coerce a client-supplied page number into a non-negative integer index."""
  if value is None or isinstance(value, bool):
    return None
  if isinstance(value, int):
    return value if value >= 0 else None
  if isinstance(value, float):
    return int(value) if value.is_integer() and value >= 0 else None
  if isinstance(value, str) and value.strip().isdigit():
    return int(value.strip())
  return None


def timestamp_millis() -> int:
  """Returns the current time in milliseconds since the epoch."""
  return int(datetime.datetime.now(datetime.timezone.utc).timestamp() * 1000)


def is_emulator() -> bool:
  """Returns True if the code is running in an emulator."""
  return bool(os.environ.get('FUNCTIONS_EMULATOR'))
