# dispatch/client.py
from __future__ import annotations
import logging
import time
from typing import Sequence

import requests

from .metrics import API_CALLS_TOTAL, API_LATENCY_SECONDS
from .utils import mask_phone

GRAPH_URL = "https://graph.facebook.com"
META_API_VERSION = "v24.0"

PAIR_RATE_LIMIT_CODE = 131056
_THROUGHPUT_CODES = {4, 80007, 130429}


class WhatsAppError(Exception):
    retryable = False

    def __init__(self, message: str, *, status: int | None = None, code: int | None = None):
        self.status = status
        self.code = code
        super().__init__(message)

class ThroughputLimitError(WhatsAppError):
    retryable = True

class ServerError(WhatsAppError):
    retryable = True

class PairRateLimitError(WhatsAppError):
    """Too many messages to the same recipient in a short window (131056)."""

class AuthenticationError(WhatsAppError): ...
class AuthorizationError(WhatsAppError): ...
class RecipientError(WhatsAppError): ...
class TemplateNotFoundError(WhatsAppError): ...
class ValidationError(WhatsAppError): ...


def classify_error(status: int | None, code: int | None) -> type[WhatsAppError]:
    """
    Map a Graph API failure to an error class.
    The WhatsApp error code wins over the HTTP status when both are known.
    """
    if code == PAIR_RATE_LIMIT_CODE:
        return PairRateLimitError
    if code in _THROUGHPUT_CODES:
        return ThroughputLimitError
    if code == 190:
        return AuthenticationError
    if code in (10, 200):
        return AuthorizationError
    if code == 131026:
        return RecipientError
    if code == 132000:
        return TemplateNotFoundError
    if code == 100:
        return ValidationError

    if status == 401:
        return AuthenticationError
    if status == 403:
        return AuthorizationError
    if status == 429:
        return ThroughputLimitError
    if status is not None and status >= 500:
        return ServerError
    if status is not None and status >= 400:
        return ValidationError
    return WhatsAppError


def get_retry_delay(attempt: int, base: float = 1.0, cap: float = 60.0) -> float:
    # Meta recommends 4^X backoff
    return min(base * (4 ** attempt), cap)


def wait_meta_backoff(base: float = 1.0, cap: float = 60.0):
    """tenacity wait strategy built on get_retry_delay."""
    def _wait(retry_state) -> float:
        return get_retry_delay(retry_state.attempt_number - 1, base, cap)
    return _wait


def build_template_payload(to: str, template_name: str, language: str = "pt_BR",
                           variables: Sequence[str] = ()) -> dict:
    template: dict = {"name": template_name, "language": {"code": language}}
    if variables:
        template["components"] = [{
            "type": "body",
            "parameters": [{"type": "text", "text": str(v)} for v in variables],
        }]
    return {
        "messaging_product": "whatsapp",
        "to": to,
        "type": "template",
        "template": template,
    }


class WhatsAppClient:
    def __init__(self, phone_number_id: str, access_token: str, *,
                 api_version: str = META_API_VERSION,
                 base_url: str = GRAPH_URL,
                 timeout: float = 30.0,
                 session: requests.Session | None = None):
        if not phone_number_id or not access_token:
            raise ValueError("WhatsApp credentials are not configured")
        self.url = f"{base_url.rstrip('/')}/{api_version}/{phone_number_id}/messages"
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({
            "Authorization": f"Bearer {access_token}",
            "Content-Type": "application/json",
        })

    def close(self):
        self.session.close()

    def send_template(self, to: str, template_name: str, *, language: str = "pt_BR",
                      variables: Sequence[str] = ()) -> str:
        """
        Make exactly one API call and return the WhatsApp message id.
        Retrying is up to the caller, which must take a fresh rate limiter
        token for every attempt.
        """
        return self._post(build_template_payload(to, template_name, language, variables))

    def _post(self, payload: dict) -> str:
        start = time.monotonic()
        try:
            resp = self.session.post(self.url, json=payload, timeout=self.timeout)
        except requests.RequestException as e:
            API_LATENCY_SECONDS.observe(time.monotonic() - start)
            API_CALLS_TOTAL.labels(outcome="exception").inc()
            logging.warning("[whatsapp] Network error sending to %s: %s", mask_phone(payload["to"]), e)
            raise ServerError(f"Network error: {e}") from e

        API_LATENCY_SECONDS.observe(time.monotonic() - start)
        API_CALLS_TOTAL.labels(outcome=str(resp.status_code)).inc()

        try:
            data = resp.json()
        except ValueError:
            data = {}

        if resp.ok:
            messages = data.get("messages") or [{}]
            return messages[0].get("id", "")

        err = data.get("error") or {}
        code = err.get("code")
        message = err.get("message") or f"HTTP {resp.status_code}"
        exc_cls = classify_error(resp.status_code, code)
        logging.warning("[whatsapp] %s sending to %s: status=%s code=%s %s",
                        exc_cls.__name__, mask_phone(payload["to"]), resp.status_code, code, message)
        raise exc_cls(message, status=resp.status_code, code=code)
