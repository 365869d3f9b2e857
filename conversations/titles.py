"""
Title derivation and its deferred scheduling.

A title is requested from a cheaper model than the conversation's own, a fixed
delay after the opening turn was recorded. The request path never waits for
it and never sees its failures: ``TitleDeriver.derive_title`` always returns
a string, falling back to the placeholder title.
"""

from typing import Callable, Dict, Optional, Set
import logging
import threading

from tenacity import Retrying, stop_after_attempt, wait_exponential, retry_if_exception_type, before_sleep_log

from config import config
from conversations.context import block_for
from conversations.errors import BackendUnavailable, ConversationError, TitleDerivationFailed

TITLE_LIMIT = 50
TITLE_KEEP = 47
ELLIPSIS = "..."


def truncate_title(title: str) -> str:
    """Cut titles over 50 characters down to 47 plus an ellipsis. Idempotent."""
    if len(title) > TITLE_LIMIT:
        return title[:TITLE_KEEP] + ELLIPSIS
    return title


class TitleDeriver:
    def __init__(
        self,
        generation,
        model_id: str = config.TITLE_MODEL,
        max_tokens: int = config.TITLE_MAX_TOKENS,
        attempts: int = config.TITLE_RETRY_ATTEMPTS,
        wait=None,
        placeholder: str = config.PLACEHOLDER_TITLE,
    ):
        self.generation = generation
        self.model_id = model_id
        self.max_tokens = max_tokens
        self.attempts = max(1, attempts)
        self.wait = wait if wait is not None else wait_exponential(multiplier=1, min=1, max=4)
        self.placeholder = placeholder

    def _request_title(self, opening_text: str) -> str:
        retryer = Retrying(
            stop=stop_after_attempt(self.attempts),
            wait=self.wait,
            retry=retry_if_exception_type(BackendUnavailable),
            before_sleep=before_sleep_log(logging.getLogger(), logging.WARNING),
            reraise=True,
        )
        completion = retryer(
            self.generation.complete,
            [block_for("user", opening_text)],
            self.model_id,
            max_output_tokens=self.max_tokens,
            system_prompt=config.TITLE_PROMPT,
        )
        title = completion.text.strip().strip("\"'").strip()
        if not title:
            raise TitleDerivationFailed("Backend returned an empty title")
        return title

    def derive_title(self, opening_text: str) -> str:
        if not opening_text or not opening_text.strip():
            return self.placeholder
        try:
            return truncate_title(self._request_title(opening_text))
        except ConversationError as e:
            logging.warning(f"Title generation error: {e}")
            return self.placeholder


class TitleScheduler:
    """
    Registry of one-shot, cancelable title tasks keyed by conversation id.

    An entry lives from ``schedule`` until the timer fires or the
    conversation is deleted (``cancel``). At most one task per conversation is
    pending at any time.
    """

    def __init__(self, delay: float = config.TITLE_DELAY_SECONDS):
        self.delay = delay
        self._pending: Dict[int, threading.Timer] = {}
        self._live: Set[threading.Timer] = set()
        self._lock = threading.Lock()

    def schedule(self, conversation_id: int, job: Callable[[], None], delay: Optional[float] = None) -> bool:
        delay = self.delay if delay is None else max(0.0, delay)
        with self._lock:
            if conversation_id in self._pending:
                return False
            timer = threading.Timer(delay, self._fire, args=(conversation_id, job))
            timer.daemon = True
            self._pending[conversation_id] = timer
            self._live.add(timer)
            timer.start()
        logging.info(f"Title task for conversation {conversation_id} scheduled in {delay:.2f}s")
        return True

    def _fire(self, conversation_id: int, job: Callable[[], None]) -> None:
        timer = threading.current_thread()
        try:
            with self._lock:
                if self._pending.get(conversation_id) is not timer:
                    return  # cancelled while expiring
                del self._pending[conversation_id]
            job()
        except Exception:
            logging.exception(f"Title task for conversation {conversation_id} failed")
        finally:
            with self._lock:
                self._live.discard(timer)

    def cancel(self, conversation_id: int) -> bool:
        with self._lock:
            timer = self._pending.pop(conversation_id, None)
            if timer is not None:
                self._live.discard(timer)
        if timer is None:
            return False
        timer.cancel()
        logging.info(f"Title task for conversation {conversation_id} cancelled")
        return True

    def is_pending(self, conversation_id: int) -> bool:
        with self._lock:
            return conversation_id in self._pending

    def __len__(self) -> int:
        with self._lock:
            return len(self._pending)

    def drain(self, timeout: Optional[float] = None) -> None:
        """Wait for every scheduled or running task to finish."""
        with self._lock:
            timers = list(self._live)
        for timer in timers:
            timer.join(timeout)

    def shutdown(self) -> None:
        with self._lock:
            ids = list(self._pending)
        for conversation_id in ids:
            self.cancel(conversation_id)
