"""Models for the Firestore database."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class PageType(Enum):
  """Type of a storybook page. Stored as string in Firestore."""
  NORMAL = "NORMAL"
  GOOD_CHOICE = "GOOD_CHOICE"
  BAD_CHOICE = "BAD_CHOICE"
  COVER = "COVER"

  @staticmethod
  def from_value(value: Any) -> PageType:
    """Convert a stored value to a PageType, defaulting to NORMAL."""
    if isinstance(value, PageType):
      return value
    try:
      return PageType(str(value).upper())
    except ValueError:
      return PageType.NORMAL


class StoryStage(Enum):
  """Stage of the story generation pipeline."""
  INITIALIZING = "INITIALIZING"
  TITLES_GENERATED = "TITLES_GENERATED"
  PAGES_GENERATED = "PAGES_GENERATED"
  PROMPTS_GENERATED = "PROMPTS_GENERATED"
  IMAGES_IN_PROGRESS = "IMAGES_IN_PROGRESS"
  COMPLETED = "COMPLETED"


STATUS_INITIALIZING = "initializing"
STATUS_COMPLETED = "completed"


@dataclass(frozen=True)
class StoryProgress:
  """A persisted progress checkpoint of the story pipeline."""

  stage: StoryStage
  percent: int

  def __post_init__(self):
    if not 0 <= self.percent <= 100:
      raise ValueError(f"Progress percent out of range: {self.percent}")

  @property
  def status_label(self) -> str:
    """The `status` string that web clients poll on."""
    if self.stage == StoryStage.COMPLETED:
      return STATUS_COMPLETED
    if self.stage == StoryStage.INITIALIZING:
      return STATUS_INITIALIZING
    return f"progress_{self.percent}"

  @property
  def as_dict(self) -> dict:
    """Convert to the Firestore fields of the story document."""
    return {
      'status': self.status_label,
      'stage': self.stage.value,
      'progress': self.percent,
    }


@dataclass(kw_only=True)
class StoryPage:
  """One page of a storybook. Identified by its position in the story."""

  page_num: int
  page_type: PageType = PageType.NORMAL
  story_text: str = ""
  image_prompt: str = ""
  selected_image_url: str = ""

  @property
  def is_image_complete(self) -> bool:
    """Whether an image has been generated and stored for this page."""
    return bool(self.selected_image_url)

  @property
  def has_image_prompt(self) -> bool:
    """Whether this page has a usable image prompt."""
    return bool(self.image_prompt and self.image_prompt.strip())

  def to_dict(self) -> dict:
    """Convert to dictionary for Firestore storage."""
    return {
      'pageNum': self.page_num,
      'pageType': self.page_type.value,
      'storyText': self.story_text,
      'imagePrompt': self.image_prompt,
      'selectedImageUrl': self.selected_image_url,
    }

  @classmethod
  def from_dict(cls, data: dict | None, page_num: int) -> StoryPage:
    """Create a page from a stored or generated dictionary.

    The page number always comes from the caller, never from the data, since
    a page is identified by its array position.
    """
    data = data or {}
    story_text = (data.get('storyText') or data.get('text')
                  or data.get('pageText') or "")
    return cls(
      page_num=page_num,
      page_type=PageType.from_value(data.get('pageType')),
      story_text=story_text,
      image_prompt=data.get('imagePrompt') or "",
      selected_image_url=data.get('selectedImageUrl') or "",
    )


def pages_from_list(data: list[dict] | None) -> list[StoryPage]:
  """Build index-addressed pages from a list of page dictionaries."""
  return [StoryPage.from_dict(d, page_num=i) for i, d in enumerate(data or [])]


def pages_to_list(pages: list[StoryPage]) -> list[dict]:
  """Serialize pages, rewriting `pageNum` to match the array position."""
  result = []
  for i, page in enumerate(pages):
    page.page_num = i
    result.append(page.to_dict())
  return result


@dataclass(kw_only=True)
class Kid:
  """A child that stories are written for. Stored in the users collection."""

  key: str | None = None
  name: str = "Child"
  age: int | None = None
  gender: str | None = None
  image_url: str | None = None
  stories_created: int = 0

  @classmethod
  def from_dict(cls, data: dict, key: str | None = None) -> Kid:
    """Create Kid from Firestore dictionary."""
    return cls(
      key=key if key else data.get('id'),
      name=data.get('name') or "Child",
      age=data.get('age'),
      gender=data.get('gender'),
      image_url=data.get('imageUrl') or data.get('avatarUrl') or None,
      stories_created=data.get('stories_created') or 0,
    )


@dataclass(kw_only=True)
class Story:
  """A generated story document."""

  key: str | None = None
  user_id: str = ""
  kid_id: str = ""
  account_id: str = ""
  title: str = ""
  problem_description: str = ""
  advantages: str = ""
  disadvantages: str = ""
  pages: list[StoryPage] = field(default_factory=list)
  status: str = STATUS_INITIALIZING
  progress: int = 0
  cover_image_url: str | None = None

  @property
  def all_images_complete(self) -> bool:
    """Whether every page has a stored image."""
    return bool(self.pages) and all(p.is_image_complete for p in self.pages)

  @property
  def num_images_complete(self) -> int:
    """Number of pages that have a stored image."""
    return sum(1 for p in self.pages if p.is_image_complete)

  @classmethod
  def from_dict(cls, data: dict, key: str | None = None) -> Story:
    """Create Story from Firestore dictionary."""
    pages = data.get('pages')
    return cls(
      key=key if key else data.get('id'),
      user_id=data.get('userId') or "",
      kid_id=data.get('kidId') or "",
      account_id=data.get('accountId') or "",
      title=data.get('title') or "",
      problem_description=data.get('problemDescription') or "",
      advantages=data.get('advantages') or "",
      disadvantages=data.get('disadvantages') or "",
      pages=pages_from_list(pages if isinstance(pages, list) else None),
      status=data.get('status') or STATUS_INITIALIZING,
      progress=data.get('progress') or 0,
      cover_image_url=data.get('coverImageUrl'),
    )


@dataclass(kw_only=True)
class ImageResult:
  """Outcome of generating the image for one page."""

  page_num: int
  success: bool
  image_url: str | None = None
  error: str | None = None

  @property
  def as_dict(self) -> dict:
    """Convert to a response dictionary."""
    data: dict[str, Any] = {'pageNum': self.page_num, 'success': self.success}
    if self.image_url:
      data['imageUrl'] = self.image_url
    if self.error:
      data['error'] = self.error
    return data


@dataclass(kw_only=True)
class FullStoryResult:
  """Result of a full story generation run."""

  story_id: str
  title: str
  pages_count: int
  image_results: list[ImageResult] = field(default_factory=list)
  message: str = ""
  images_skipped: bool = False

  @property
  def images_generated(self) -> int:
    """Number of pages whose image was generated successfully."""
    return sum(1 for r in self.image_results if r.success)

  @property
  def all_images_generated(self) -> bool:
    """Whether every page got an image."""
    return (self.pages_count > 0
            and self.images_generated == self.pages_count)

  @property
  def as_dict(self) -> dict:
    """Convert to the callable function response."""
    return {
      'success': True,
      'storyId': self.story_id,
      'title': self.title,
      'pagesCount': self.pages_count,
      'imagesGenerated': self.images_generated,
      'imageResults': [r.as_dict for r in self.image_results],
      'message': self.message,
    }
