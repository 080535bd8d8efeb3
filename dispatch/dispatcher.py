# dispatch/dispatcher.py
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence

from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt

from .client import PairRateLimitError, ServerError, ThroughputLimitError, WhatsAppError, wait_meta_backoff
from .errors import LimiterStoppedError
from .events import DispatchEvent, Subject
from .rate_limit import RateLimiter
from .transform import OutboundMessage

# (message, template_name) -> WhatsApp message id; blocking, runs in a worker thread
SendFn = Callable[[OutboundMessage, str], str]


@dataclass
class MessageResult:
    phone: str
    status: str  # sent|failed|skipped
    message_id: Optional[str] = None
    error: Optional[str] = None


@dataclass
class DispatchSummary:
    campaign_id: str
    results: List[MessageResult] = field(default_factory=list)

    def _count(self, status: str) -> int:
        return sum(1 for r in self.results if r.status == status)

    @property
    def sent(self) -> int:
        return self._count("sent")

    @property
    def failed(self) -> int:
        return self._count("failed")

    @property
    def skipped(self) -> int:
        return self._count("skipped")

    @property
    def ok(self) -> bool:
        return self.failed == 0 and self.skipped == 0


class CampaignDispatcher:
    """
    Sends a campaign through a shared RateLimiter with a fixed pool of workers.
    Every API call, retries included, is preceded by exactly one
    limiter.acquire(). Throughput (429) and 5xx failures are retried with
    4^n backoff; a pair rate limit (131056) waits and is retried once.
    """

    def __init__(self, limiter: RateLimiter, send: SendFn, *,
                 concurrency: int = 10,
                 pair_rate_limit_wait: float = 6.0,
                 max_retries: int = 3,
                 backoff_base: float = 1.0,
                 backoff_cap: float = 60.0,
                 subject: Subject | None = None):
        if concurrency < 1:
            raise ValueError("concurrency must be >= 1")
        self.limiter = limiter
        self.send = send
        self.concurrency = concurrency
        self.pair_rate_limit_wait = pair_rate_limit_wait
        self.max_retries = max_retries
        self.backoff_base = backoff_base
        self.backoff_cap = backoff_cap
        self.subject = subject or Subject()

    async def dispatch(self, campaign_id: str, template_name: str,
                       messages: Sequence[OutboundMessage]) -> DispatchSummary:
        summary = DispatchSummary(campaign_id=campaign_id)
        if not messages:
            return summary

        queue: asyncio.Queue[OutboundMessage] = asyncio.Queue()
        for m in messages:
            queue.put_nowait(m)

        logging.info("[dispatch] Campaign %s: %d messages, template=%s, workers=%d, rate=%d/s",
                     campaign_id, len(messages), template_name,
                     min(self.concurrency, len(messages)), self.limiter.rate)

        workers = [
            asyncio.create_task(self._worker(campaign_id, template_name, queue, summary))
            for _ in range(min(self.concurrency, len(messages)))
        ]
        try:
            await asyncio.gather(*workers)
        finally:
            for w in workers:
                w.cancel()

        logging.info("[dispatch] Campaign %s done: sent=%d failed=%d skipped=%d",
                     campaign_id, summary.sent, summary.failed, summary.skipped)
        return summary

    async def _worker(self, campaign_id: str, template_name: str,
                      queue: asyncio.Queue, summary: DispatchSummary) -> None:
        while True:
            try:
                msg = queue.get_nowait()
            except asyncio.QueueEmpty:
                return
            result = await self._send_one(template_name, msg)
            summary.results.append(result)
            self.subject.notify(DispatchEvent(
                campaign_id=campaign_id, phone=result.phone, status=result.status,
                message_id=result.message_id, error=result.error,
            ))

    async def _attempt(self, template_name: str, msg: OutboundMessage) -> str:
        await self.limiter.acquire()
        return await asyncio.to_thread(self.send, msg, template_name)

    async def _send_one(self, template_name: str, msg: OutboundMessage) -> MessageResult:
        retried_pair_limit = False
        while True:
            retrying = AsyncRetrying(
                stop=stop_after_attempt(self.max_retries + 1),
                wait=wait_meta_backoff(self.backoff_base, self.backoff_cap),
                retry=retry_if_exception_type((ThroughputLimitError, ServerError)),
                reraise=True,
            )
            try:
                message_id = await retrying(self._attempt, template_name, msg)
                return MessageResult(msg.phone, "sent", message_id=message_id)
            except LimiterStoppedError as e:
                return MessageResult(msg.phone, "skipped", error=str(e))
            except PairRateLimitError as e:
                if retried_pair_limit:
                    return MessageResult(msg.phone, "failed", error=str(e))
                retried_pair_limit = True
                logging.info("[dispatch] Pair rate limit hit, retrying in %.1fs", self.pair_rate_limit_wait)
                await asyncio.sleep(self.pair_rate_limit_wait)
            except WhatsAppError as e:
                return MessageResult(msg.phone, "failed", error=f"{type(e).__name__}: {e}")
            except Exception as e:
                logging.exception("[dispatch] Unexpected error sending message")
                return MessageResult(msg.phone, "failed", error=str(e))
