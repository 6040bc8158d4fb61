"""
Telegram Bot API gateway.

All outbound Telegram calls go through this class.
Direct `requests` calls in services or blueprints are FORBIDDEN.

  - Retry: up to ``max_retries`` attempts, exponential backoff (1 s → 2 s → 4 s, capped at 10 s)
  - Timeout: configurable per gateway (default 10 s)
  - Sessions: requests.Session is not shared across threads; each delivery
    thread lazily gets its own
  - Never raises on delivery failure: a GatewayResult is returned and the
    caller decides whether to log it

Testability: pass a mock `session` to TelegramGateway() in tests instead of
letting it create a real requests.Session internally, or patch
``telegram_gateway.send_message``.
"""

from __future__ import annotations

import logging
import threading
import time

import requests

logger = logging.getLogger(__name__)

_DEFAULT_TIMEOUT = 10
_DEFAULT_RETRIES = 3
_BACKOFF_CAP_SECONDS = 10


class GatewayResult:
    """Structured return value from TelegramGateway calls.

    Attributes:
        ok:           True if Telegram accepted the message.
        status_code:  HTTP status code (None if network-level failure).
        error:        Human-readable error message or None.
        attempts:     Number of attempts made.
        duration_ms:  Total latency across attempts.
    """

    def __init__(self, ok: bool, status_code: int | None, error: str | None,
                 attempts: int, duration_ms: int) -> None:
        self.ok = ok
        self.status_code = status_code
        self.error = error
        self.attempts = attempts
        self.duration_ms = duration_ms

    def __repr__(self):
        return f"<GatewayResult ok={self.ok} status={self.status_code} attempts={self.attempts}>"


class TelegramGateway:
    """Telegram Bot API message sender.

    Usage:
        from worktrack.integrations.telegram_gateway import telegram_gateway
        result = telegram_gateway.send_message(token, chat_id, "<b>Hi</b>")
    """

    def __init__(
        self,
        session: requests.Session | None = None,
        *,
        api_base: str = "https://api.telegram.org",
        timeout: int = _DEFAULT_TIMEOUT,
        max_retries: int = _DEFAULT_RETRIES,
        sleep=time.sleep,
    ) -> None:
        self._session = session
        self._local = threading.local()
        self.api_base = api_base.rstrip("/")
        self.timeout = timeout
        self.max_retries = max(1, max_retries)
        self._sleep = sleep

    @property
    def session(self) -> requests.Session:
        """Return the injected session, else one requests.Session per thread."""
        if self._session is not None:
            return self._session
        session = getattr(self._local, "session", None)
        if session is None:
            session = self._local.session = requests.Session()
        return session

    def configure(self, *, api_base=None, timeout=None, max_retries=None) -> None:
        """Apply app config (called from the application factory)."""
        if api_base:
            self.api_base = api_base.rstrip("/")
        if timeout:
            self.timeout = timeout
        if max_retries:
            self.max_retries = max(1, max_retries)

    def _backoff(self, attempt: int) -> float:
        return min(2 ** (attempt - 1), _BACKOFF_CAP_SECONDS)

    def send_message(self, bot_token: str, chat_id: str, text: str) -> GatewayResult:
        """POST sendMessage with retries. Never raises."""
        url = f"{self.api_base}/bot{bot_token}/sendMessage"
        payload = {"chat_id": chat_id, "text": text, "parse_mode": "HTML"}
        started = time.perf_counter()
        status_code = None
        error = None

        for attempt in range(1, self.max_retries + 1):
            try:
                resp = self.session.post(url, json=payload, timeout=self.timeout)
                status_code = resp.status_code
                if resp.ok:
                    if attempt > 1:
                        logger.info("Telegram delivery succeeded on attempt %d/%d",
                                    attempt, self.max_retries)
                    return GatewayResult(True, status_code, None, attempt,
                                         int((time.perf_counter() - started) * 1000))
                error = f"HTTP {status_code}: {resp.text[:200]}"
                # Client errors other than rate limiting will not get better on retry
                if 400 <= status_code < 500 and status_code != 429:
                    return GatewayResult(False, status_code, error, attempt,
                                         int((time.perf_counter() - started) * 1000))
            except requests.RequestException as exc:
                error = f"{type(exc).__name__}: {exc}"

            logger.warning("Telegram delivery attempt %d/%d failed: %s",
                           attempt, self.max_retries, error)
            if attempt < self.max_retries:
                self._sleep(self._backoff(attempt))

        return GatewayResult(False, status_code, error, self.max_retries,
                             int((time.perf_counter() - started) * 1000))


# Module-level singleton
telegram_gateway = TelegramGateway()
