"""Assistant run orchestration: submit a run, wait for it, extract the reply"""
import logging
import threading
import time
from dataclasses import dataclass
from typing import Iterator, List, Optional

from openai_client import ProviderError, RunFailedError

logger = logging.getLogger(__name__)

FILE_SEARCH_TOOL = {"type": "file_search"}

PENDING_STATUSES = ("queued", "in_progress")
RUN_FAILURE_EVENTS = ("thread.run.failed", "thread.run.cancelled", "thread.run.expired", "error")


@dataclass(frozen=True)
class RunPollPolicy:
    """Fixed-interval polling bounded by an attempt count and a deadline"""

    interval: float = 1.0
    max_attempts: int = 45
    deadline: float = 90.0

    @classmethod
    def from_settings(cls, settings):
        return cls(
            interval=settings.run_poll_interval,
            max_attempts=settings.run_poll_max_attempts,
            deadline=settings.run_poll_deadline,
        )


@dataclass(frozen=True)
class StreamEvent:
    """One item of a streamed run: a text delta, the end, or an error"""

    type: str
    text: str = ""
    error: Optional[str] = None

    TEXT = "text"
    END = "end"
    ERROR = "error"


def extract_text(message) -> Optional[str]:
    """First text part of a provider message object"""
    for part in message.get("content") or []:
        if part.get("type", "text") == "text":
            value = (part.get("text") or {}).get("value")
            if value is not None:
                return value
    return None


def extract_delta_text(payload) -> str:
    """Concatenated text of a ``thread.message.delta`` payload"""
    delta = payload.get("delta") or {}
    chunks = []
    for part in delta.get("content") or []:
        value = (part.get("text") or {}).get("value")
        if value:
            chunks.append(value)
    return "".join(chunks)


class AssistantRunner:
    """Runs the hosted assistant against a thread.

    ``run`` polls until the run is terminal and returns the newest assistant
    message; ``stream`` yields StreamEvents as the provider sends them.
    Provider failures raise ProviderError (RunFailedError for runs that do not
    complete); nothing is retried here.
    """

    def __init__(self, client, assistant_id, poll_policy=None, no_answer_text="",
                 sleep=time.sleep, clock=time.monotonic):
        self.client = client
        self.assistant_id = assistant_id
        self.poll_policy = poll_policy or RunPollPolicy()
        self.no_answer_text = no_answer_text
        self._sleep = sleep
        self._clock = clock

    def run(self, thread_id, user_message, instructions, tools: List[dict],
            cancel_event: Optional[threading.Event] = None) -> str:
        self.client.add_message(thread_id, user_message)
        logger.info("Added message to thread %s", thread_id)

        run = self.client.create_run(thread_id, self.assistant_id, instructions, tools)
        run_id = run["id"]
        logger.info("Started assistant run %s (file_search: %s)", run_id, "enabled" if tools else "disabled")

        status = self._wait_for_run(thread_id, run_id, run.get("status"), cancel_event)
        if status != "completed":
            raise RunFailedError(f"Assistant run did not complete. Final status: {status}", status=status)

        for message in self.client.list_messages(thread_id, limit=10):
            if message.get("role") == "assistant":
                text = extract_text(message)
                if text:
                    return text
                break
        logger.warning("⚠️  No assistant message found on thread %s", thread_id)
        return self.no_answer_text

    def _wait_for_run(self, thread_id, run_id, status, cancel_event) -> str:
        policy = self.poll_policy
        deadline = self._clock() + policy.deadline
        attempt = 0

        while status in PENDING_STATUSES or status is None:
            if attempt >= policy.max_attempts:
                raise RunFailedError(f"Run {run_id} still '{status}' after {attempt} attempts", status=status)
            if self._clock() >= deadline:
                raise RunFailedError(f"Run {run_id} exceeded its {policy.deadline}s deadline", status=status)

            if cancel_event is not None:
                if cancel_event.wait(policy.interval):
                    raise RunFailedError(f"Run {run_id} polling cancelled", status="cancelled")
            else:
                self._sleep(policy.interval)

            status = self.client.get_run(thread_id, run_id).get("status", "unknown")
            logger.info("Run status is '%s' (attempt %s)", status, attempt)
            attempt += 1

        return status

    def stream(self, thread_id, user_message, instructions, tools: List[dict]) -> Iterator[StreamEvent]:
        """Yield text deltas, then exactly one END or ERROR event.

        A failure to post the message raises ProviderError on the first
        ``next()``. Failures opening or reading the stream become the
        ERROR event.
        """
        self.client.add_message(thread_id, user_message)
        logger.info("Added message to thread %s (stream)", thread_id)

        frames = self.client.stream_run(thread_id, self.assistant_id, instructions, tools)
        full_text = []
        try:
            for event_name, payload in frames:
                if event_name in RUN_FAILURE_EVENTS:
                    detail = _failure_detail(payload) or event_name
                    logger.error("❌ Streamed run ended with %s: %s", event_name, detail)
                    yield StreamEvent(StreamEvent.ERROR, text="".join(full_text), error=detail)
                    return
                if not isinstance(payload, dict):
                    continue
                if event_name == "thread.message.delta" or payload.get("object") == "thread.message.delta":
                    chunk = extract_delta_text(payload)
                    if chunk:
                        full_text.append(chunk)
                        yield StreamEvent(StreamEvent.TEXT, text=chunk)
        except ProviderError as e:
            yield StreamEvent(StreamEvent.ERROR, text="".join(full_text), error=str(e))
            return

        yield StreamEvent(StreamEvent.END, text="".join(full_text))


def _failure_detail(payload):
    if not isinstance(payload, dict):
        return None
    error = payload.get("last_error") or payload.get("error") or {}
    if isinstance(error, dict):
        return error.get("message")
    return str(error)
