"""Tests for the utils module."""

from common import utils


def test_detect_language_hebrew_in_title():
  assert utils.detect_language("Dana", "הסיפור של דנה") == "he"


def test_detect_language_defaults_to_english():
  assert utils.detect_language("John", "A day at school") == "en"
  assert utils.detect_language(None, "") == "en"


def test_page_index_from_update_path():
  assert utils.page_index_from_update_path("pages/3/imagePrompt") == 3
  assert utils.page_index_from_update_path("pages/0") == 0
  assert utils.page_index_from_update_path("cover/imageUrl") is None
  assert utils.page_index_from_update_path("pages/x/imagePrompt") is None
  assert utils.page_index_from_update_path(None) is None


def test_coerce_page_index():
  assert utils.coerce_page_index(2) == 2
  assert utils.coerce_page_index("4") == 4
  assert utils.coerce_page_index(1.0) == 1
  assert utils.coerce_page_index(1.5) is None
  assert utils.coerce_page_index(-1) is None
  assert utils.coerce_page_index(True) is None
  assert utils.coerce_page_index("abc") is None
  assert utils.coerce_page_index(None) is None


def test_is_emulator(monkeypatch):
  monkeypatch.delenv("FUNCTIONS_EMULATOR", raising=False)
  assert utils.is_emulator() is False
  monkeypatch.setenv("FUNCTIONS_EMULATOR", "true")
  assert utils.is_emulator() is True
