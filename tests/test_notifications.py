"""Tests for the order notification email (SMTP mocked)."""

from __future__ import annotations

import smtplib
from unittest.mock import MagicMock, patch

import pytest

from storefront.config import Settings
from storefront.errors import HandlerFailure
from storefront.notifications import OrderMailer
from storefront.webhooks.schemas import parse_webhook_payload


@pytest.fixture
def mailer():
    return OrderMailer(
        host="smtp.example.com",
        user="bot@example.com",
        password="secret",
        recipients=["ops@example.com", " owner@example.com "],
    )


@pytest.fixture
def order(payloads):
    return parse_webhook_payload(payloads["ORDER_PLACED"])


class TestConfiguration:
    def test_unconfigured_by_default(self):
        assert OrderMailer.from_settings(Settings(_env_file=None)).is_configured is False

    def test_configured_from_settings(self):
        s = Settings(
            smtp_host="smtp.example.com",
            smtp_from="orders@example.com",
            notify_recipients=["ops@example.com"],
            _env_file=None,
        )
        assert OrderMailer.from_settings(s).is_configured is True

    def test_unconfigured_skips_send(self, order):
        with patch("smtplib.SMTP") as mock_smtp:
            assert OrderMailer(host="").notify_order(order) is False
        mock_smtp.assert_not_called()


class TestFormat:
    def test_subject_and_recipients(self, mailer, order):
        msg = mailer.format_order(order)
        assert msg["Subject"] == f"[ORDER] #{order.friendly_id} - 59.98 USD"
        assert msg["To"] == "ops@example.com, owner@example.com"
        assert msg["From"] == "bot@example.com"

    def test_body_lists_items_without_customer_email(self, mailer, order):
        body = mailer.format_order(order).get_payload()[0].get_payload()
        assert "Tour Shirt" in body
        assert "x2" in body
        assert order.email not in body


class TestSend:
    @patch("smtplib.SMTP")
    def test_starttls_and_login(self, mock_smtp, mailer, order):
        server = MagicMock()
        mock_smtp.return_value.__enter__.return_value = server

        assert mailer.notify_order(order) is True
        mock_smtp.assert_called_once_with("smtp.example.com", 587, timeout=15)
        server.starttls.assert_called_once()
        server.login.assert_called_once_with("bot@example.com", "secret")
        server.send_message.assert_called_once()

    @patch("smtplib.SMTP")
    def test_smtp_error_wrapped(self, mock_smtp, mailer, order):
        server = MagicMock()
        server.send_message.side_effect = smtplib.SMTPRecipientsRefused({})
        mock_smtp.return_value.__enter__.return_value = server

        with pytest.raises(HandlerFailure):
            mailer.notify_order(order)

    @patch("smtplib.SMTP", side_effect=OSError("connection refused"))
    def test_connection_error_wrapped(self, mock_smtp, mailer, order):
        with pytest.raises(HandlerFailure):
            mailer.send(mailer.format_order(order))
