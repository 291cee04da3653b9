"""Announcement sinks for completed settlements.

Announcers are plain callables taking the settlement summary dict. They are
best-effort: the controller logs and ignores any exception they raise.
"""

import logging
import os
from typing import Optional

import requests
from dotenv import load_dotenv

logger = logging.getLogger(__name__)


class LoggingAnnouncer:
    """Write the draw result to the log."""

    def __init__(self, level: int = logging.INFO):
        self.level = level

    def __call__(self, summary: dict) -> None:
        logger.log(
            self.level,
            f"Draw {summary.get('draw_id')} settled: numbers={summary.get('winning_numbers')} "
            f"powerball={summary.get('powerball')} winners={summary.get('winner_count')} "
            f"paid={summary.get('total_disbursed')}",
        )


class WebhookAnnouncer:
    """POST the settlement summary as JSON to a webhook.

    Parameters
    ----------
    url : Optional[str], default: None
        Target URL. Falls back to the ``ANNOUNCE_WEBHOOK_URL`` environment
        variable.
    timeout : float, default: 10
        Request timeout in seconds.
    session : Optional[requests.Session], default: None
        Session to send with; a plain ``requests.post`` is used otherwise.
    """

    def __init__(
        self,
        url: Optional[str] = None,
        timeout: float = 10,
        session: Optional[requests.Session] = None,
    ):
        load_dotenv()
        url = url or os.getenv("ANNOUNCE_WEBHOOK_URL")
        if not url:
            raise ValueError("Environment variable 'ANNOUNCE_WEBHOOK_URL' is not set")
        self.url = url
        self.timeout = timeout
        self.session = session

    def __call__(self, summary: dict) -> None:
        poster = self.session.post if self.session is not None else requests.post
        r = poster(self.url, json=summary, timeout=self.timeout)
        r.raise_for_status()
        logger.info(f"Announced draw {summary.get('draw_id')} to webhook")
