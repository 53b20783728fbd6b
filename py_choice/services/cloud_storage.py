"""Cloud Storage service."""

import base64
import binascii
import datetime

from common import config, utils
from firebase_functions import logger
from google.cloud import storage as gcs

_client = None  # pylint: disable=invalid-name


class Error(Exception):
  """Base class for exceptions in this module."""


class InvalidImageDataError(Error):
  """Raised when image data is not valid base64."""


def client() -> gcs.Client:
  """Get the Google Cloud Storage client."""
  global _client  # pylint: disable=global-statement
  if _client is None:
    _client = gcs.Client(project=config.PROJECT_ID)
  return _client


def story_image_path(
  account_id: str,
  user_id: str,
  story_id: str,
  image_type: str,
  page_num: int | None = None,
) -> str:
  """Object path of a generated image.

  Args:
    account_id: The account ID
    user_id: The user (kid) ID
    story_id: The story ID. Unused for avatars.
    image_type: One of 'page', 'avatar' or 'cover'
    page_num: The page number, for page images

  Returns:
    The object path inside the bucket
  """
  base = f"accounts/{account_id}/users/{user_id}"
  match image_type:
    case "avatar":
      return f"{base}/avatars/avatar.png"
    case "cover":
      return f"{base}/stories/{story_id}/cover.png"
    case "page":
      name = page_num if page_num is not None else utils.timestamp_millis()
      return f"{base}/stories/{story_id}/pages/page-{name}.png"
    case _:
      raise ValueError(f"Unknown image type: {image_type}")


def public_url(bucket_name: str, blob_name: str) -> str:
  """Public URL of a publicly readable object."""
  return f"{config.PUBLIC_STORAGE_BASE_URL}/{bucket_name}/{blob_name}"


class StoryImageStorage:
  """Saves generated images to Cloud Storage as public PNG objects."""

  def __init__(self, bucket_name: str | None = None, gcs_client=None):
    self.bucket_name = bucket_name or config.IMAGE_BUCKET_NAME
    self._gcs_client = gcs_client

  @property
  def gcs_client(self) -> gcs.Client:
    """The Cloud Storage client."""
    return self._gcs_client if self._gcs_client is not None else client()

  def save_image(
    self,
    base64_image: str,
    account_id: str,
    user_id: str,
    story_id: str,
    image_type: str,
    page_num: int | None = None,
  ) -> str:
    """Upload a base64 image and return its public URL.

    Raises:
      InvalidImageDataError: If the image data is not valid base64
    """
    try:
      image_bytes = base64.b64decode(base64_image, validate=True)
    except (binascii.Error, ValueError) as e:
      raise InvalidImageDataError(f"Invalid base64 image data: {e}") from e
    if not image_bytes:
      raise InvalidImageDataError("Empty image data")

    blob_name = story_image_path(account_id, user_id, story_id, image_type,
                                 page_num)
    bucket = self.gcs_client.bucket(self.bucket_name)
    blob = bucket.blob(blob_name)
    blob.metadata = {
      "uploadedAt": datetime.datetime.now(datetime.timezone.utc).isoformat(),
    }
    blob.upload_from_string(image_bytes, content_type="image/png")
    blob.make_public()

    url = public_url(self.bucket_name, blob_name)
    logger.info(f"Saved {image_type} image to {url}",
                extra={
                  "json_fields": {
                    "story_id": story_id,
                    "user_id": user_id,
                    "page_num": page_num,
                  }
                })
    return url
