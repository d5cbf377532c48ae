"""Push notifications through Pushbullet."""

from __future__ import annotations

import logging
import threading

import requests

logger = logging.getLogger(__name__)

PUSHBULLET_URL = "https://api.pushbullet.com/v2/pushes"


class PushNotifier:
    """Fire-and-forget notifications. Without an API key pushes are dropped."""

    def __init__(
        self,
        api_key: str | None = None,
        timeout: int = 10,
        session: requests.Session | None = None,
    ):
        self.api_key = api_key
        self.timeout = timeout
        self.session = session or requests.Session()
        self._pending: list[threading.Thread] = []

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)

    def notify(self, title: str, body: str) -> None:
        """Send a push in the background. Never raises."""
        if not self.enabled:
            logger.debug("Push notifications not configured, dropping: %s", title)
            return

        thread = threading.Thread(target=self._send, args=(title, body), daemon=True)
        self._pending = [t for t in self._pending if t.is_alive()]
        self._pending.append(thread)
        thread.start()

    def _send(self, title: str, body: str) -> None:
        try:
            response = self.session.post(
                PUSHBULLET_URL,
                headers={"Access-Token": self.api_key},
                json={"type": "note", "title": title, "body": body},
                timeout=self.timeout,
            )
            response.raise_for_status()
        except requests.exceptions.RequestException as e:
            logger.warning("Push notification failed: %s", e)

    def wait(self, timeout: float | None = None) -> None:
        """Wait for pending pushes, e.g. before the process exits."""
        for thread in self._pending:
            thread.join(timeout)
        self._pending = [t for t in self._pending if t.is_alive()]
