"""Unit tests for the Brevo email client (payload, send outcomes, retry)."""

from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from finapprove.services import email_service
from finapprove.services.email_service import (
    _TransientEmailError,
    _post_to_brevo,
    build_payload,
    send_email,
)


def _response(status_code: int, body: dict = None) -> MagicMock:
    response = MagicMock()
    response.status_code = status_code
    response.json.return_value = body or {}
    response.text = str(body or "")
    return response


def test_build_payload_dedupes_recipients():
    payload = build_payload(
        ["fin@finapprove.test", "fin@finapprove.test", "md@finapprove.test"],
        "Subject",
        "<p>Body</p>",
    )
    assert payload["to"] == [{"email": "fin@finapprove.test"}, {"email": "md@finapprove.test"}]
    assert payload["sender"]["email"] == email_service.settings.EMAIL_FROM_ADDRESS
    assert payload["htmlContent"] == "<p>Body</p>"


@pytest.mark.asyncio
async def test_send_email_skipped_without_api_key(monkeypatch):
    monkeypatch.setattr(email_service.settings, "BREVO_API_KEY", None)
    with patch("finapprove.services.email_service._post_to_brevo", AsyncMock()) as mock_post:
        assert await send_email(["fin@finapprove.test"], "Subject", "<p/>") is False
    mock_post.assert_not_awaited()


@pytest.mark.asyncio
async def test_send_email_accepted(monkeypatch):
    monkeypatch.setattr(email_service.settings, "BREVO_API_KEY", "test-key")
    with patch(
        "finapprove.services.email_service._post_to_brevo",
        AsyncMock(return_value=_response(201, {"messageId": "<m1@brevo>"})),
    ):
        assert await send_email(["fin@finapprove.test"], "Subject", "<p/>") is True


@pytest.mark.asyncio
async def test_send_email_client_error(monkeypatch):
    monkeypatch.setattr(email_service.settings, "BREVO_API_KEY", "test-key")
    with patch(
        "finapprove.services.email_service._post_to_brevo",
        AsyncMock(return_value=_response(400, {"message": "invalid sender"})),
    ):
        assert await send_email(["fin@finapprove.test"], "Subject", "<p/>") is False


@pytest.mark.asyncio
async def test_send_email_retries_exhausted(monkeypatch):
    monkeypatch.setattr(email_service.settings, "BREVO_API_KEY", "test-key")
    with patch(
        "finapprove.services.email_service._post_to_brevo",
        AsyncMock(side_effect=_TransientEmailError("Brevo returned 503")),
    ):
        assert await send_email(["fin@finapprove.test"], "Subject", "<p/>") is False


@pytest.mark.asyncio
async def test_post_to_brevo_retries_network_errors():
    client = MagicMock()
    client.post = AsyncMock(side_effect=[httpx.ConnectError("connection refused"), _response(201)])
    with patch("finapprove.services.email_service.get_http_client", return_value=client):
        response = await _post_to_brevo({"to": []})

    assert response.status_code == 201
    assert client.post.await_count == 2
