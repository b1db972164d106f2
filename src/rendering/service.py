# src/rendering/service.py - v2
"""RenderService: the only path from the engine to a rendering backend.

Each attempt takes a rate-limit token, runs the backend under a hard
timeout and is written to the call log. Transient failures and timeouts
are retried per the batch's RetryPolicy with the same idempotency key.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
import time
from typing import NamedTuple

from bulkdoc.core.errors import BulkDocError, RenderTimeout
from bulkdoc.core.models import OutputOptions, Record
from bulkdoc.rendering.base_renderer import BaseRenderer
from bulkdoc.rendering.rate_limiter import RateLimiter
from bulkdoc.rendering.retry import RetryPolicy, is_retryable, with_retry
from bulkdoc.template.models import TemplateModel
from bulkdoc.tracking.call_logger import CallLogger

logger = logging.getLogger(__name__)


class RenderAbandoned(Exception):
    """Cancelled while waiting for a rate-limit token.

    With no earlier attempt the record is skipped; otherwise ``last_error``
    is the record's final outcome.
    """

    def __init__(self, row_index: int, last_error: BaseException | None = None) -> None:
        self.row_index = row_index
        self.last_error = last_error
        super().__init__(f"Row {row_index} abandoned before rendering")


class RenderOutcome(NamedTuple):
    content: bytes
    attempts: int


def idempotency_key(batch_id: str, row_index: int) -> str:
    """Stable key for one record of one batch, shared by all its attempts."""
    return hashlib.sha256(f"{batch_id}:{row_index}".encode()).hexdigest()[:32]


class RenderService:
    """Rate-limited, retried, timed and logged rendering."""

    def __init__(
        self,
        renderer: BaseRenderer,
        limiter: RateLimiter,
        call_logger: CallLogger | None = None,
        timeout_s: float = 300.0,
    ) -> None:
        self._renderer = renderer
        self._limiter = limiter
        self._calls = call_logger or CallLogger()
        self._timeout_s = timeout_s

    @property
    def renderer(self) -> BaseRenderer:
        return self._renderer

    @property
    def limiter(self) -> RateLimiter:
        return self._limiter

    @property
    def call_logger(self) -> CallLogger:
        return self._calls

    async def prepare(self, template: TemplateModel, options: OutputOptions) -> None:
        await self._renderer.prepare(template, options)

    async def close(self) -> None:
        await self._renderer.close()

    async def render(
        self,
        template: TemplateModel,
        record: Record,
        options: OutputOptions,
        row_index: int,
        batch_id: str,
        policy: RetryPolicy,
        cancel: asyncio.Event | None = None,
    ) -> RenderOutcome:
        """Render one record with limiter, timeout and retries.

        Raises:
            RenderAbandoned: Cancelled before the first attempt started.
            BulkDocError: The final per-record error.
        """
        key = idempotency_key(batch_id, row_index)
        backend = self._renderer.backend_name
        last_error: BaseException | None = None
        attempts = 0

        async def attempt(n: int) -> bytes:
            nonlocal last_error, attempts
            if not await self._acquire(cancel):
                self._calls.record(batch_id, row_index, n, backend, 0, status="abandoned")
                raise RenderAbandoned(row_index, last_error)

            attempts = n
            start = time.monotonic()
            try:
                content = await asyncio.wait_for(
                    self._renderer.render(template, record, options, row_index, key),
                    timeout=self._timeout_s,
                )
            except asyncio.TimeoutError as exc:
                error = RenderTimeout(f"Row {row_index} exceeded {self._timeout_s:g}s")
                self._log_failure(batch_id, row_index, n, backend, start, error, policy)
                last_error = error
                raise error from exc
            except Exception as exc:
                self._log_failure(batch_id, row_index, n, backend, start, exc, policy)
                last_error = exc
                raise

            self._calls.record(
                batch_id, row_index, n, backend, _elapsed_ms(start),
                status="success", output_bytes=len(content),
            )
            return content

        try:
            content = await with_retry(attempt, policy, label=f"Row {row_index}", cancel=cancel)
        except RenderAbandoned as abandoned:
            if abandoned.last_error is not None:
                raise abandoned.last_error from None
            raise
        return RenderOutcome(content, attempts)

    async def _acquire(self, cancel: asyncio.Event | None) -> bool:
        """Take a token, or return False if ``cancel`` fires first."""
        if cancel is None:
            await self._limiter.acquire()
            return True
        if cancel.is_set():
            return False

        acquire = asyncio.ensure_future(self._limiter.acquire())
        cancelled = asyncio.ensure_future(cancel.wait())
        try:
            await asyncio.wait({acquire, cancelled}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            cancelled.cancel()
            if not acquire.done():
                acquire.cancel()
        # a token granted in the same tick as the cancel is still used
        outcome = (await asyncio.gather(acquire, return_exceptions=True))[0]
        return not isinstance(outcome, BaseException)

    def _log_failure(
        self,
        batch_id: str,
        row_index: int,
        attempt: int,
        backend: str,
        start: float,
        error: BaseException,
        policy: RetryPolicy,
    ) -> None:
        will_retry = is_retryable(error) and attempt <= policy.attempts
        code = error.code if isinstance(error, BulkDocError) else type(error).__name__
        self._calls.record(
            batch_id, row_index, attempt, backend, _elapsed_ms(start),
            status="retry" if will_retry else "failed", error_code=code,
        )


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)
