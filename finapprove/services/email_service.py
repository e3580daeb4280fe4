"""
Transactional email over the Brevo REST API.

Called only from post-commit dispatch; a failed send never affects workflow
state. Returns True when Brevo accepted the message.
"""

import logging
from typing import Optional

import httpx
import structlog
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from finapprove.config import settings

logger = structlog.get_logger()
_std_logger = logging.getLogger(__name__)

BREVO_API_URL = "https://api.brevo.com/v3/smtp/email"
ACCEPTED_STATUS_CODES = (201, 202)

_http_client: Optional[httpx.AsyncClient] = None


def get_http_client() -> httpx.AsyncClient:
    global _http_client
    if _http_client is None or _http_client.is_closed:
        _http_client = httpx.AsyncClient(timeout=httpx.Timeout(10.0, connect=5.0))
    return _http_client


async def close_http_client() -> None:
    global _http_client
    if _http_client is not None and not _http_client.is_closed:
        await _http_client.aclose()
    _http_client = None


class _TransientEmailError(Exception):
    """5xx or network failure; retried."""


def build_payload(
    to_emails: list[str],
    subject: str,
    html_content: str,
    sender_name: Optional[str] = None,
    sender_email: Optional[str] = None,
) -> dict:
    # Duplicates make Brevo reject the whole message
    unique_recipients = list(dict.fromkeys(to_emails))
    return {
        "sender": {
            "name": sender_name or settings.APP_NAME,
            "email": sender_email or settings.EMAIL_FROM_ADDRESS,
        },
        "to": [{"email": email} for email in unique_recipients],
        "subject": subject,
        "htmlContent": html_content,
    }


@retry(
    retry=retry_if_exception_type(_TransientEmailError),
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=2, max=10),
    before_sleep=before_sleep_log(_std_logger, logging.WARNING),
    reraise=True,
)
async def _post_to_brevo(payload: dict) -> httpx.Response:
    client = get_http_client()
    headers = {
        "accept": "application/json",
        "api-key": settings.BREVO_API_KEY or "",
        "content-type": "application/json",
    }
    try:
        response = await client.post(BREVO_API_URL, headers=headers, json=payload)
    except (httpx.ConnectError, httpx.TimeoutException, httpx.NetworkError) as exc:
        logger.warning("email_network_error_retrying", error=str(exc))
        raise _TransientEmailError(str(exc)) from exc

    if response.status_code >= 500:
        logger.warning("email_brevo_5xx_retrying", status_code=response.status_code)
        raise _TransientEmailError(f"Brevo returned {response.status_code}")
    return response


async def send_email(
    to_emails: list[str],
    subject: str,
    html_content: str,
    sender_name: Optional[str] = None,
    sender_email: Optional[str] = None,
) -> bool:
    """Send one message. Up to 3 attempts with exponential back-off on 5xx/network errors."""
    if not settings.BREVO_API_KEY:
        logger.info("email_skipped_no_api_key", subject=subject, to=to_emails)
        return False
    if not to_emails:
        logger.warning("email_no_recipients", subject=subject)
        return False

    payload = build_payload(to_emails, subject, html_content, sender_name, sender_email)
    try:
        response = await _post_to_brevo(payload)
    except _TransientEmailError as exc:
        logger.error("email_all_retries_exhausted", error=str(exc), to=to_emails, subject=subject)
        return False

    if response.status_code in ACCEPTED_STATUS_CODES:
        logger.info(
            "email_sent_brevo",
            to=to_emails,
            subject=subject,
            message_id=response.json().get("messageId"),
        )
        return True

    logger.error(
        "email_failed_brevo",
        status_code=response.status_code,
        response=response.text[:500],
        to=to_emails,
        subject=subject,
    )
    return False
