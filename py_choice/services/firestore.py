"""Firestore operations."""

from typing import Any

from common import config, errors, models
from firebase_admin import firestore
from firebase_functions import logger
from google.cloud.firestore import (SERVER_TIMESTAMP, DocumentReference,
                                    Transaction, transactional)

_db = None  # pylint: disable=invalid-name


def db() -> firestore.client:
  """Get the firestore client."""
  global _db  # pylint: disable=global-statement
  if _db is None:
    _db = firestore.client()
  return _db


class StoryStore:
  """Story and kid documents of one deployment environment.

  Collections are namespaced by environment: `users_{env}` (kid
  documents) and `stories_gen_{env}`.
  """

  def __init__(self, environment: str | None = None, client: Any = None):
    self.environment = environment or config.get_environment()
    self._client = client

  @property
  def client(self) -> Any:
    """The Firestore client."""
    return self._client if self._client is not None else db()

  @property
  def kids_collection(self) -> str:
    """Name of the kids collection."""
    return f"{config.KIDS_COLLECTION_PREFIX}_{self.environment}"

  @property
  def stories_collection(self) -> str:
    """Name of the stories collection."""
    return f"{config.STORIES_COLLECTION_PREFIX}_{self.environment}"

  def kid_ref(self, kid_id: str) -> DocumentReference:
    """Reference to a kid document."""
    return self.client.collection(self.kids_collection).document(kid_id)

  def story_ref(self, story_id: str) -> DocumentReference:
    """Reference to a story document."""
    return self.client.collection(self.stories_collection).document(story_id)

  def get_kid(self, kid_id: str) -> models.Kid | None:
    """Get a kid by ID, or None if it does not exist."""
    snapshot = self.kid_ref(kid_id).get()
    if not snapshot.exists:
      return None
    return models.Kid.from_dict(snapshot.to_dict() or {}, key=kid_id)

  def update_kid(self, kid_id: str, data: dict[str, Any]) -> None:
    """Update fields of a kid document."""
    self.kid_ref(kid_id).update({**data, 'updatedAt': SERVER_TIMESTAMP})

  def increment_stories_created(self, kid_id: str) -> int:
    """Increment the kid's `stories_created` counter.

    This is a plain read-increment-write, not an atomic increment. The counter
    is advisory.

    Returns:
        The new counter value.
    """
    ref = self.kid_ref(kid_id)
    snapshot = ref.get()
    if not snapshot.exists:
      raise errors.not_found(f"Kid not found: {kid_id}")
    current = (snapshot.to_dict() or {}).get('stories_created') or 0
    ref.update({
      'stories_created': current + 1,
      'updatedAt': SERVER_TIMESTAMP,
    })
    return current + 1

  def create_story(
    self,
    user_id: str,
    kid_id: str,
    account_id: str,
    progress: models.StoryProgress,
  ) -> str:
    """Create a new story document with a generated ID.

    Returns:
        The new story ID.
    """
    ref = self.client.collection(self.stories_collection).document()
    ref.set({
      'id': ref.id,
      'userId': user_id,
      'kidId': kid_id,
      'accountId': account_id,
      **progress.as_dict,
      'createdAt': SERVER_TIMESTAMP,
      'lastUpdated': SERVER_TIMESTAMP,
    })
    logger.info(f"Created story {ref.id} in {self.stories_collection}",
                extra={"json_fields": {
                  "story_id": ref.id,
                  "user_id": user_id,
                }})
    return ref.id

  def get_story(self, story_id: str) -> models.Story | None:
    """Get a story by ID, or None if it does not exist."""
    snapshot = self.story_ref(story_id).get()
    if not snapshot.exists:
      return None
    return models.Story.from_dict(snapshot.to_dict() or {}, key=story_id)

  def update_story(self, story_id: str, data: dict[str, Any]) -> None:
    """Update fields of a story document."""
    self.story_ref(story_id).update({**data, 'lastUpdated': SERVER_TIMESTAMP})

  def update_progress(
    self,
    story_id: str,
    progress: models.StoryProgress,
    extra_data: dict[str, Any] | None = None,
  ) -> None:
    """Persist a progress checkpoint of a story."""
    self.update_story(story_id, {**progress.as_dict, **(extra_data or {})})

  def save_pages(
    self,
    story_id: str,
    pages: list[models.StoryPage],
    extra_data: dict[str, Any] | None = None,
  ) -> None:
    """Write the whole page array of a story.

    Every page's `pageNum` is rewritten to its array index first.
    """
    self.update_story(story_id, {
      'pages': models.pages_to_list(pages),
      **(extra_data or {}),
    })

  def update_page(
    self,
    story_id: str,
    page_index: int,
    fields: dict[str, Any],
    expected_story_text: str | None = None,
  ) -> models.Story:
    """Update fields of one page atomically.

    The page array is read, checked and written back inside a transaction, so
    a concurrent update of a sibling page makes this transaction retry
    instead of being overwritten.

    Args:
        story_id: The story ID.
        page_index: Zero-based page index.
        fields: Page fields to set, e.g. `selectedImageUrl`.
        expected_story_text: If given, the page at `page_index` must have this
          text. Guards against a client-supplied index that points at a
          different page than intended.

    Returns:
        The story as written by the transaction.

    Raises:
        StoryError: NOT_FOUND, FAILED_PRECONDITION or OUT_OF_RANGE.
    """
    transaction = self.client.transaction()
    return _update_page_in_transaction(
      transaction,
      self.story_ref(story_id),
      page_index,
      fields,
      expected_story_text,
    )


@transactional
def _update_page_in_transaction(
  transaction: Transaction,
  story_ref: DocumentReference,
  page_index: int,
  fields: dict[str, Any],
  expected_story_text: str | None,
) -> models.Story:
  """Transactional wrapper for `_update_page_logic`."""
  return _update_page_logic(transaction, story_ref, page_index, fields,
                            expected_story_text)


def _update_page_logic(
  transaction: Transaction,
  story_ref: DocumentReference,
  page_index: int,
  fields: dict[str, Any],
  expected_story_text: str | None = None,
) -> models.Story:
  """Read-verify-mutate-write of one page inside a transaction."""
  snapshot = story_ref.get(transaction=transaction)
  if not snapshot.exists:
    raise errors.not_found(f"Story document not found: {story_ref.id}")

  data = snapshot.to_dict() or {}
  pages = data.get('pages')
  if not isinstance(pages, list):
    raise errors.StoryError(errors.ErrorKind.FAILED_PRECONDITION,
                            "Pages field is not an array or does not exist.")

  if (isinstance(page_index, bool) or not isinstance(page_index, int)
      or page_index < 0 or page_index >= len(pages)):
    raise errors.StoryError(errors.ErrorKind.OUT_OF_RANGE,
                            f"Page number {page_index} is out of bounds.")

  current = pages[page_index] if isinstance(pages[page_index], dict) else {}
  if expected_story_text is not None:
    current_text = models.StoryPage.from_dict(current, page_index).story_text
    if current_text.strip() != expected_story_text.strip():
      raise errors.StoryError(
        errors.ErrorKind.FAILED_PRECONDITION,
        f"Page {page_index} does not match the expected page text.")

  updated_pages = list(pages)
  updated_pages[page_index] = {**current, **fields, 'pageNum': page_index}
  transaction.update(story_ref, {
    'pages': updated_pages,
    'lastUpdated': SERVER_TIMESTAMP,
  })

  logger.info(f"Updated page {page_index} of story {story_ref.id}",
              extra={
                "json_fields": {
                  "story_id": story_ref.id,
                  "page_num": page_index,
                  "total_pages": len(pages),
                  "fields": sorted(fields),
                }
              })
  return models.Story.from_dict({**data, 'pages': updated_pages},
                                key=story_ref.id)
