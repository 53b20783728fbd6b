"""Global configuration constants."""

import enum
import os

from common import utils
from google.cloud import secretmanager

# Google Cloud Project ID
PROJECT_ID = "choice-story"

# Google Cloud Storage bucket for generated images
IMAGE_BUCKET_NAME = "choice-story.firebasestorage.app"
PUBLIC_STORAGE_BASE_URL = "https://storage.googleapis.com"

# Deployment environments. Firestore collections are namespaced by environment.
ENV_DEVELOPMENT = "development"
ENV_PRODUCTION = "production"

KIDS_COLLECTION_PREFIX = "users"
STORIES_COLLECTION_PREFIX = "stories_gen"

# Public web app base URLs, used to build links in emails
BASE_URL_PRODUCTION = "https://choice-story.com"
BASE_URL_DEVELOPMENT = "https://staging.choice-story.com"

# Story generation
MAX_IMAGE_RETRIES = 3
IMAGE_RETRY_BASE_DELAY_MS = 1000
MAX_REFINEMENT_ATTEMPTS = 3
REFINEMENT_BACKOFF_MS = 1000

# Email
EMAIL_FROM_ADDRESS = "Choice Story <noreply@choice-story.com>"
RESEND_API_BASE_URL = "https://api.resend.com"


class PromptId(str, enum.Enum):
  """Stored OpenAI prompts used by the story pipeline."""

  STORY_TITLES_TEXT = "pmpt_68c9805a3288819596598b4cfc8ba6e1077ae3f79a6fa02f"
  STORY_PAGES_TEXT = "pmpt_68eccc1a52d88197a4eb4b01b55ec9ed0c51c2b70b0f0962"
  STORY_IMAGE_PROMPT = "pmpt_68ece5aeb8e8819797eadd3add0a0bf602ffbf85dcd73618"
  STORY_PAGE_IMAGE = "pmpt_68c842692f2481978e9b3d186cb827440e5d7cfc9430c65b"
  KID_AVATAR_IMAGE = "pmpt_68c835fd608c81968d46482611d767b404863ae2f0e066d0"
  STORY_COVER_IMAGE = "pmpt_68ee901cab508194872021a19d9579700e1f53529cfbcead"


class EmailTemplate(str, enum.Enum):
  """Resend email template IDs."""

  STORY_READY_EN = "cdde88b2-fc1b-4d74-9c91-f5446b5a2f0f"
  STORY_READY_HE = "cdec5dd2-6eea-4420-b5b1-c1a022a8396f"


def get_environment() -> str:
  """Returns the deployment environment used to namespace stored data.

  The emulator always uses the development collections.
  """
  if utils.is_emulator():
    return ENV_DEVELOPMENT
  env = os.environ.get("NODE_ENV") or os.environ.get("APP_ENV")
  return ENV_DEVELOPMENT if env == ENV_DEVELOPMENT else ENV_PRODUCTION


def get_base_url(environment: str) -> str:
  """Returns the web app base URL for the given environment."""
  if environment == ENV_PRODUCTION:
    return BASE_URL_PRODUCTION
  return BASE_URL_DEVELOPMENT


def _get_secret(secret_id: str) -> str:
  """Return the latest version of a Secret Manager secret as a UTF-8 string.

  An environment variable with the same name takes precedence, which is how
  the emulator is configured.
  """
  override = os.environ.get(secret_id)
  if override:
    return override
  client = secretmanager.SecretManagerServiceClient()
  name = f"projects/{PROJECT_ID}/secrets/{secret_id}/versions/latest"
  response = client.access_secret_version(name=name)
  return response.payload.data.decode("UTF-8")


def get_openai_api_key() -> str:
  """Gets the OpenAI API key from the secret manager."""
  return _get_secret("OPENAI_API_KEY")


def get_resend_api_key() -> str:
  """Gets the Resend API key from the secret manager."""
  return _get_secret("RESEND_API_KEY")
