"""
Tests for recovery-code delivery

SMTP is replaced by an in-process stand-in so no mail server is contacted.
"""
import smtplib

import pytest
from structlog.testing import capture_logs

import mailer


class FakeSMTP:
    """Records what would have been sent; optionally fails on delivery."""

    instances = []
    fail_with = None

    def __init__(self, host, port, timeout=None):
        self.host = host
        self.port = port
        self.messages = []
        self.started_tls = False
        self.credentials = None
        FakeSMTP.instances.append(self)

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        return False

    def starttls(self):
        self.started_tls = True

    def login(self, user, password):
        self.credentials = (user, password)

    def send_message(self, message):
        if FakeSMTP.fail_with is not None:
            raise FakeSMTP.fail_with
        self.messages.append(message)


@pytest.fixture
def smtp(monkeypatch):
    FakeSMTP.instances = []
    FakeSMTP.fail_with = None
    monkeypatch.setattr(smtplib, "SMTP", FakeSMTP)
    monkeypatch.setattr(mailer, "EMAIL_HOST", "smtp.shop.com")
    monkeypatch.setattr(mailer, "EMAIL_PORT", 587)
    monkeypatch.setattr(mailer, "EMAIL_SECURE", False)
    monkeypatch.setattr(mailer, "EMAIL_USER", "mailer@shop.com")
    monkeypatch.setattr(mailer, "EMAIL_PASS", "app-password")
    return FakeSMTP


class TestSendRecoveryCode:

    def test_unconfigured_host_skips_delivery_with_warning(self, monkeypatch):
        monkeypatch.setattr(mailer, "EMAIL_HOST", None)

        with capture_logs() as logs:
            mailer.send_recovery_code("a@x.com", "Alice", "A1B2C3")

        assert [log["event"] for log in logs] == ["mail_not_configured"]
        assert logs[0]["log_level"] == "warning"

    def test_code_is_delivered_over_starttls(self, smtp):
        mailer.send_recovery_code("a@x.com", "Alice", "A1B2C3")

        server = smtp.instances[0]
        assert (server.host, server.port) == ("smtp.shop.com", 587)
        assert server.started_tls
        assert server.credentials == ("mailer@shop.com", "app-password")
        message = server.messages[0]
        assert message["To"] == "a@x.com"
        assert "A1B2C3" in message.get_content()

    def test_smtp_failure_is_logged_not_raised(self, smtp):
        smtp.fail_with = smtplib.SMTPRecipientsRefused({"a@x.com": (550, b"no such mailbox")})

        with capture_logs() as logs:
            mailer.send_recovery_code("a@x.com", "Alice", "A1B2C3")

        assert [log["event"] for log in logs] == ["mail_delivery_failed"]


class TestForgotPasswordWithFailingMail:

    def test_response_is_unchanged_when_delivery_fails(self, test_client, make_user, smtp):
        make_user(email="alice@shop.com")
        smtp.fail_with = smtplib.SMTPServerDisconnected("connection lost")

        known = test_client.post("/users/forgot-password", json={"email": "alice@shop.com"})
        unknown = test_client.post("/users/forgot-password", json={"email": "ghost@shop.com"})

        assert known.status_code == unknown.status_code == 200
        assert known.json() == unknown.json()
        assert len(smtp.instances) == 1
