# service/emailer.py
"""
HTML email over SMTP (stdlib smtplib).

SMTP settings come from the environment once per run via resolve_smtp_settings()
and are passed to send_html() explicitly. There are no retries here: a failed
delivery raises EmailSendError and the caller decides what that means.
"""

from __future__ import annotations

import os
import smtplib
import ssl
from collections.abc import Iterable
from dataclasses import dataclass
from email.message import EmailMessage
from email.utils import formataddr, formatdate, make_msgid

# Ports where "auto" STARTTLS stays off (plain relays, local test servers).
_CLEARTEXT_PORTS = (25, 2525)


class EmailSendError(RuntimeError):
    """The message could not be built or delivered."""


@dataclass(frozen=True)
class SmtpSettings:
    host: str = "127.0.0.1"
    port: int = 587
    username: str | None = None
    password: str | None = None
    use_ssl: bool = False
    starttls: str = "auto"  # "true" | "false" | "auto"
    default_from_addr: str = ""
    default_from_name: str = ""
    insecure_tls: bool = False
    timeout: float = 30.0

    def wants_starttls(self) -> bool:
        if self.use_ssl or self.starttls == "false":
            return False
        if self.starttls == "true":
            return True
        return self.port not in _CLEARTEXT_PORTS

    def tls_context(self) -> ssl.SSLContext:
        if self.insecure_tls:
            return ssl._create_unverified_context()
        return ssl.create_default_context()


def _env(*names: str, default: str = "") -> str:
    """First non-empty value among the given variables."""
    for name in names:
        value = os.getenv(name)
        if value:
            return value
    return default


def _env_flag(name: str) -> bool:
    return _env(name, default="false").strip().lower() == "true"


def resolve_smtp_settings() -> SmtpSettings:
    """
    Build SmtpSettings from:
        SMTP_HOST, SMTP_PORT
        SMTP_USERNAME / SMTP_USER, SMTP_PASSWORD / SMTP_PASS
        SMTP_USE_SSL ("true" implies no STARTTLS), SMTP_STARTTLS (true|false|auto)
        SMTP_FROM / EMAIL_FROM, SMTP_FROM_NAME, SMTP_INSECURE_TLS
    """
    raw_port = _env("SMTP_PORT", "SMTP_SERVER_PORT", default="587")
    try:
        port = int(raw_port)
    except ValueError as e:
        raise EmailSendError(f"SMTP_PORT is not a number: {raw_port!r}") from e

    username = _env("SMTP_USERNAME", "SMTP_USER", "SMTP_SERVER_USER") or None
    use_ssl = _env_flag("SMTP_USE_SSL")
    return SmtpSettings(
        host=_env("SMTP_HOST", "SMTP_SERVER_HOST", default="127.0.0.1"),
        port=port,
        username=username,
        password=_env("SMTP_PASSWORD", "SMTP_PASS", "SMTP_SERVER_PASS") or None,
        use_ssl=use_ssl,
        starttls="false" if use_ssl else _env("SMTP_STARTTLS", default="auto").strip().lower(),
        default_from_addr=_env("SMTP_FROM", "EMAIL_FROM", default=username or ""),
        default_from_name=_env("SMTP_FROM_NAME"),
        insecure_tls=_env_flag("SMTP_INSECURE_TLS"),
    )


def _addresses(value: Iterable[str] | str | None) -> list[str]:
    if not value:
        return []
    items = value.split(",") if isinstance(value, str) else value
    return [a.strip() for a in items if a and a.strip()]


def _compose(*, subject: str, html: str, sender: str, to: list[str], cc: list[str]) -> EmailMessage:
    if not (subject and subject.strip()):
        raise EmailSendError("subject is empty")
    if not (html and html.strip()):
        raise EmailSendError("HTML body is empty")

    msg = EmailMessage()
    msg["Subject"] = subject
    msg["From"] = sender
    if to:
        msg["To"] = ", ".join(to)
    if cc:
        msg["Cc"] = ", ".join(cc)
    msg["Date"] = formatdate(localtime=True)
    msg["Message-ID"] = make_msgid()
    msg.set_content("This message is HTML; open it in an HTML-capable mail client.")
    msg.add_alternative(html, subtype="html", charset="utf-8")
    return msg


def _deliver(msg: EmailMessage, recipients: list[str], settings: SmtpSettings) -> None:
    if not settings.host:
        raise EmailSendError("no SMTP host configured (SMTP_HOST)")
    context = settings.tls_context()
    try:
        if settings.use_ssl:
            conn = smtplib.SMTP_SSL(settings.host, settings.port, context=context, timeout=settings.timeout)
        else:
            conn = smtplib.SMTP(settings.host, settings.port, timeout=settings.timeout)
        with conn:
            conn.ehlo()
            if settings.wants_starttls():
                conn.starttls(context=context)
                conn.ehlo()
            if settings.username and settings.password:
                conn.login(settings.username, settings.password)
            # Bcc only travels in the envelope
            conn.send_message(msg, to_addrs=recipients)
    except (smtplib.SMTPException, OSError) as e:
        raise EmailSendError(f"SMTP send failed: {e}") from e


def send_html(
    *,
    subject: str,
    html: str,
    to: list[str] | str,
    cc: list[str] | None = None,
    bcc: list[str] | None = None,
    from_addr: str | None = None,
    settings: SmtpSettings | None = None,
) -> str:
    """Send one HTML message and return its Message-ID. Raises EmailSendError."""
    settings = settings or resolve_smtp_settings()
    to_list, cc_list, bcc_list = _addresses(to), _addresses(cc), _addresses(bcc)
    recipients = to_list + cc_list + bcc_list
    if not recipients:
        raise EmailSendError("no recipients")

    sender = (from_addr or settings.default_from_addr).strip()
    if not sender:
        raise EmailSendError("no sender address; set SMTP_FROM or pass from_addr")
    if settings.default_from_name.strip():
        sender = formataddr((settings.default_from_name.strip(), sender))

    msg = _compose(subject=subject, html=html, sender=sender, to=to_list, cc=cc_list)
    _deliver(msg, recipients, settings)
    return str(msg["Message-ID"])
