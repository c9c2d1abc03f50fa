# tests/test_mailer.py

from __future__ import annotations

import smtplib

import pytest

from taskapp import mailer, settings

from .helpers import FakeSMTP


@pytest.fixture()
def smtp(monkeypatch) -> type[FakeSMTP]:
    monkeypatch.setattr(FakeSMTP, "instances", [])
    monkeypatch.setattr(mailer.smtplib, "SMTP", FakeSMTP)
    monkeypatch.setattr(settings, "EMAIL_USER", "app@x.com")
    monkeypatch.setattr(settings, "EMAIL_PASSWORD", "pw")
    monkeypatch.setattr(settings, "EMAIL_FROM", "")
    monkeypatch.setattr(settings, "FRONTEND_URL", "https://tasks.example")
    return FakeSMTP


def test_unconfigured_mailer_does_not_send(monkeypatch) -> None:
    monkeypatch.setattr(settings, "EMAIL_USER", "")
    monkeypatch.setattr(mailer.smtplib, "SMTP", lambda *a, **k: pytest.fail("SMTP used"))
    assert mailer.send_email("a@x.com", "hi", "body") is False


def test_verification_email_contains_link(smtp) -> None:
    assert mailer.send_verification_email("a@x.com", "Ann", "abc123") is True

    (conn,) = smtp.instances
    assert conn.started_tls
    assert conn.logged_in_as == "app@x.com"
    (msg,) = conn.sent
    assert msg["To"] == "a@x.com"
    assert msg["From"] == "app@x.com"
    assert "https://tasks.example/verify-email?token=abc123" in msg.get_content()


def test_reset_email_contains_link(smtp) -> None:
    mailer.send_reset_email("a@x.com", "Ann", "r3set")
    (msg,) = smtp.instances[0].sent
    assert msg["Subject"] == "Password Reset - Tasks App"
    assert "https://tasks.example/reset-password?token=r3set" in msg.get_content()


def test_smtp_failure_is_reported_not_raised(smtp, monkeypatch) -> None:
    def refuse(self, user, password):
        raise smtplib.SMTPAuthenticationError(535, b"bad credentials")

    monkeypatch.setattr(FakeSMTP, "login", refuse)
    assert mailer.send_email("a@x.com", "hi", "body") is False


def test_signup_reports_sent_verification_email(client, smtp) -> None:
    r = client.post("/api/auth/signup", json={"email": "a@x.com", "password": "secret1"})
    assert r.status_code == 201
    assert r.json()["message"] == "Account created! Please check your email to verify your account."
    (msg,) = smtp.instances[0].sent
    assert msg["To"] == "a@x.com"
