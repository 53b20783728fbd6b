"""Story-ready email notifications."""

from __future__ import annotations

from typing import Any, Callable

from common import config, utils
from firebase_admin import auth
from firebase_functions import logger

_DEFAULT_TITLE = {
  'en': "Your story",
  'he': "הסיפור שלך",
}

_STORY_READY_TEMPLATES = {
  'en': config.EmailTemplate.STORY_READY_EN,
  'he': config.EmailTemplate.STORY_READY_HE,
}


class StoryReadyNotifier:
  """Emails the account holder a link once every page of a story has an image."""

  def __init__(
    self,
    email_client: Any,
    user_lookup: Callable[[str], Any] = auth.get_user,
    environment: str | None = None,
  ):
    self._email_client = email_client
    self._user_lookup = user_lookup
    self._environment = environment or config.get_environment()

  def story_url(self, story_id: str) -> str:
    """Link to the story in the web app."""
    return f"{config.get_base_url(self._environment)}/stories/{story_id}"

  def notify_story_ready(
    self,
    user_id: str,
    story_id: str,
    title: str | None,
    kid_name: str | None = None,
  ) -> bool:
    """Send the story-ready email.

    Failures are logged and never raised, since the story itself is complete.

    Returns:
        Whether the email was sent.
    """
    log_data = {"story_id": story_id, "user_id": user_id}
    try:
      user = self._user_lookup(user_id)
      email = getattr(user, 'email', None)
    except Exception as e:  # pylint: disable=broad-except
      logger.error(f"Could not look up user {user_id} for story email: {e}",
                   extra={"json_fields": log_data})
      return False

    if not email:
      logger.warn(f"No email for user {user_id}, skipping story email",
                  extra={"json_fields": log_data})
      return False

    language = utils.detect_language(kid_name, title)
    template = _STORY_READY_TEMPLATES[language]
    try:
      result = self._email_client.send_template_email(
        to=email,
        template_id=template.value,
        variables={
          'STORY_URL': self.story_url(story_id),
          'STORY_TITLE': title or _DEFAULT_TITLE[language],
        },
      )
    except Exception as e:  # pylint: disable=broad-except
      logger.error(f"Error sending story email for {story_id}: {e}",
                   extra={"json_fields": log_data})
      return False

    if not result.success:
      logger.error(f"Story email for {story_id} failed: {result.error}",
                   extra={"json_fields": log_data})
      return False

    logger.info(f"Sent {language} story-ready email for {story_id}",
                extra={"json_fields": {
                  **log_data, "email_id": result.id
                }})
    return True
