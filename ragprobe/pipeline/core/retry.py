from __future__ import annotations
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from typing import Callable, Any, Dict, List, Optional, Tuple
import logging
import time

from ragprobe.llm.chat_service import ChatCompletionService
from ragprobe.llm.types import CallOptions, ChatResponse
from .context import CancelToken
from .errors import MalformedResponseError, RunCancelled
from .models import ModelCallResult

logger = logging.getLogger(__name__)


class RetryError(Exception):
    def __init__(self, last: BaseException, attempts: int):
        super().__init__(str(last) or type(last).__name__)
        self.last = last
        self.attempts = attempts


class Retryer:
    """
    Fixed-delay retry loop with a per-attempt deadline.

    Each attempt runs on a worker thread and is abandoned once timeout_sec
    elapses; the stuck call is left to its client-side timeout. The cancel
    token is polled before every attempt and interrupts the delay.
    """
    def __init__(
        self,
        max_retries: int = 2,
        delay_sec: float = 2.0,
        timeout_sec: Optional[float] = 90.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.max_retries = max_retries
        self.delay_sec = delay_sec
        self.timeout_sec = timeout_sec
        self._sleep = sleep

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1

    def _pause(self, cancel: Optional[CancelToken]):
        if cancel is not None:
            if cancel.wait(self.delay_sec):
                raise RunCancelled()
        elif self.delay_sec > 0:
            self._sleep(self.delay_sec)

    def _with_deadline(self, fn: Callable, timeout: Optional[float], *args, **kwargs) -> Any:
        if not timeout:
            return fn(*args, **kwargs)
        # one worker per attempt: an abandoned call must not hold a slot for later ones
        pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix="ragprobe-call")
        try:
            fut = pool.submit(fn, *args, **kwargs)
            try:
                return fut.result(timeout=timeout)
            except FutureTimeout:
                raise TimeoutError(f"call timed out after {timeout:g}s") from None
        finally:
            pool.shutdown(wait=False)

    def call(
        self,
        fn: Callable,
        *args,
        cancel: Optional[CancelToken] = None,
        timeout: Optional[float] = None,
        **kwargs,
    ) -> Tuple[Any, int]:
        """Returns (value, attempts). Raises RetryError after the last attempt, RunCancelled on cancel."""
        timeout = self.timeout_sec if timeout is None else timeout
        last: Optional[BaseException] = None
        for attempt in range(1, self.max_attempts + 1):
            if attempt > 1:
                logger.info("[retry] attempt %d/%d in %.1fs", attempt, self.max_attempts, self.delay_sec)
                self._pause(cancel)
            if cancel is not None and cancel.cancelled:
                raise RunCancelled()
            try:
                return self._with_deadline(fn, timeout, *args, **kwargs), attempt
            except RunCancelled:
                raise
            except Exception as e:
                last = e
                logger.warning("[retry] attempt %d/%d failed: %s: %s", attempt, self.max_attempts, type(e).__name__, e)
        raise RetryError(last, self.max_attempts)


class ModelInvoker:
    """
    invoke(model, messages, options) -> ModelCallResult, never raises for call failures.

    A reply without textual content counts as a failed attempt.
    """
    def __init__(self, service: ChatCompletionService, retryer: Optional[Retryer] = None):
        self.service = service
        self.retryer = retryer or Retryer()

    def _checked_call(self, model: str, messages: List[Dict[str, str]], options: CallOptions) -> ChatResponse:
        response = self.service.call(model, messages, options)
        if response is None or not isinstance(response.content, str):
            raise MalformedResponseError("Model call succeeded but returned unexpected format.")
        return response

    def invoke(
        self,
        model: str,
        messages: List[Dict[str, str]],
        options: CallOptions,
        cancel: Optional[CancelToken] = None,
    ) -> ModelCallResult:
        timeout = options.timeout_ms / 1000 if options.timeout_ms else None
        try:
            response, attempts = self.retryer.call(
                self._checked_call, model, messages, options, cancel=cancel, timeout=timeout
            )
        except RetryError as e:
            return ModelCallResult(success=False, error=str(e), attempts=e.attempts)
        return ModelCallResult(
            success=True,
            content=response.content,
            token_usage=response.usage,
            duration_ns=response.duration_ns,
            attempts=attempts,
        )
