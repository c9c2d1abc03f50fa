# tests/helpers.py

from __future__ import annotations

from dataclasses import dataclass, field
from email.message import EmailMessage


def bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


@dataclass
class FakeClock:
    """Manually advanced monotonic clock for cache tests."""

    now: float = 1000.0

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@dataclass
class FakeSMTP:
    """
    Stand-in for smtplib.SMTP.

    Records every instance in `instances` so tests can inspect what was sent.
    """

    host: str
    port: int
    timeout: float | None = None
    started_tls: bool = False
    logged_in_as: str | None = None
    sent: list[EmailMessage] = field(default_factory=list)

    instances = []

    def __post_init__(self) -> None:
        FakeSMTP.instances.append(self)

    def __enter__(self) -> "FakeSMTP":
        return self

    def __exit__(self, *exc) -> None:
        return None

    def starttls(self) -> None:
        self.started_tls = True

    def login(self, user: str, password: str) -> None:
        self.logged_in_as = user

    def send_message(self, msg: EmailMessage) -> None:
        self.sent.append(msg)
