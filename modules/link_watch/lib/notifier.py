from __future__ import annotations

from collections.abc import Sequence

from service import emailer

from .models import ScrapeResult
from .utils import esc


class TransportError(RuntimeError):
    """Raised when the email transport rejects the notification."""


def build_body(results: ScrapeResult) -> str:
    """
    One heading-link per result:
      <h4><a href="{url}">{text}</a></h4>
    Ordered by URL so repeated runs render the same way.
    """
    return "".join(
        f'<h4><a href="{esc(url)}">{esc(text or url)}</a></h4>' for url, text in sorted(results.items())
    )


def wrap_document(content_html: str, *, heading: str | None = None, intro: str | None = None) -> str:
    parts: list[str] = ["<div>"]
    if heading:
        parts.append(f"<h2>{esc(heading)}</h2>")
    if intro:
        parts.append(f"<p>{esc(intro)}</p>")
    parts.append(content_html)
    parts.append("</div>")
    return "\n".join(parts)


def notify(
    new_results: ScrapeResult,
    *,
    sender: str,
    recipients: Sequence[str],
    subject: str,
    smtp: emailer.SmtpSettings | None = None,
) -> str:
    """
    Email every result in a single message. Returns the Message-ID.

    Must not be called with an empty mapping; the engine checks first.
    """
    if not new_results:
        raise ValueError("notify() called with no results")

    n = len(new_results)
    html = wrap_document(
        build_body(new_results),
        heading=subject,
        intro=f"{n} new link{'s' if n != 1 else ''} found.",
    )
    try:
        return emailer.send_html(
            subject=subject,
            html=html,
            to=list(recipients),
            from_addr=sender,
            settings=smtp,
        )
    except emailer.EmailSendError as e:
        raise TransportError(f"error sending email: {e}") from e
