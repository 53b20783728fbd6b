"""Resend API client wrapper.

Thin wrapper around the Resend REST API used to send templated emails.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any

import requests
from common import config
from firebase_functions import logger

_REQUEST_TIMEOUT_SEC = 15


class Error(Exception):
  """Base exception for email client errors."""


@dataclass(kw_only=True)
class SendEmailResult:
  """Outcome of sending an email."""
  success: bool
  id: str | None = None
  error: str | None = None


def fill_template(text: str, variables: dict[str, Any] | None) -> str:
  """Replace `{{ NAME }}` placeholders with variable values."""
  for key, value in (variables or {}).items():
    placeholder = re.compile(r'\{\{\s*' + re.escape(key) + r'\s*\}\}')
    text = placeholder.sub(lambda _m, v=value: str(v), text)
  return text


class EmailClient:
  """Sends emails rendered from stored Resend templates."""

  def __init__(
    self,
    *,
    session: requests.Session | None = None,
    api_key: str | None = None,
    base_url: str = config.RESEND_API_BASE_URL,
  ):
    self._session = session or requests.Session()
    self._api_key = api_key
    self._base_url = base_url.rstrip('/')

  @property
  def api_key(self) -> str:
    """The Resend API key, loaded on first use."""
    if not self._api_key:
      self._api_key = config.get_resend_api_key()
    return self._api_key

  def _request(self, method: str, path: str, **kwargs) -> dict[str, Any]:
    response = self._session.request(
      method,
      f"{self._base_url}{path}",
      headers={
        'Authorization': f"Bearer {self.api_key}",
        'Content-Type': 'application/json',
      },
      timeout=_REQUEST_TIMEOUT_SEC,
      **kwargs,
    )
    if response.status_code >= 400:
      raise Error(
        f"Resend {method} {path} failed with status {response.status_code}: "
        f"{response.text}")
    body = response.json()
    if not isinstance(body, dict):
      raise Error(f"Unexpected Resend response type: {type(body)}")
    return body

  def get_template(self, template_id: str) -> dict[str, Any]:
    """Fetch a stored template."""
    return self._request('GET', f"/templates/{template_id}")

  def send_template_email(
    self,
    *,
    to: str,
    template_id: str,
    variables: dict[str, Any] | None = None,
  ) -> SendEmailResult:
    """Render a stored template and send it.

    Never raises. Failures are logged and reported in the result.
    """
    to = (to or '').strip()
    if not to:
      return SendEmailResult(success=False, error="Recipient is required")

    try:
      template = self.get_template(template_id)
      html = fill_template(template.get('html') or '', variables)
      subject = fill_template(template.get('subject') or 'No Subject',
                              variables)
      sent = self._request('POST',
                           '/emails',
                           json={
                             'from': template.get('from')
                             or config.EMAIL_FROM_ADDRESS,
                             'to': [to],
                             'subject': subject,
                             'html': html,
                           })
    except (Error, requests.RequestException, ValueError) as e:
      logger.error(f"Error sending email: {e}",
                   extra={
                     "json_fields": {
                       "event": "email_send_failed",
                       "template_id": template_id,
                     }
                   })
      return SendEmailResult(success=False, error=str(e))

    logger.info('Sent templated email',
                extra={
                  "json_fields": {
                    "event": "email_sent",
                    "template_id": template_id,
                    "email_id": sent.get('id'),
                  }
                })
    return SendEmailResult(success=True, id=sent.get('id'))
