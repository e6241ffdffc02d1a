import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass, field

from text_humanizer.config import settings
from text_humanizer.undetectable import FetchError, JobResult, UndetectableClient

logger = logging.getLogger(__name__)


class PollError(RuntimeError):
    code = "POLL_ERROR"

    def __init__(self, message: str, job_id: str) -> None:
        super().__init__(message)
        self.job_id = job_id


class PollTimeout(PollError):
    code = "POLL_TIMEOUT"

    def __init__(self, job_id: str, attempts: int) -> None:
        super().__init__(
            f"Document {job_id} was not ready after {attempts} attempts; "
            "the remote outcome is unknown and no credits were charged",
            job_id,
        )
        self.attempts = attempts


class PollCancelled(PollError):
    code = "POLL_CANCELLED"

    def __init__(self, job_id: str) -> None:
        super().__init__(f"Polling for document {job_id} was cancelled", job_id)


class JobError(PollError):
    code = "JOB_ERROR"

    def __init__(self, job_id: str, error: str) -> None:
        super().__init__(f"Humanization failed: {error}", job_id)
        self.error = error


def _is_terminal(result: JobResult) -> bool:
    return result.is_terminal


@dataclass
class RetryPolicy:
    interval_sec: float = 5.0
    max_attempts: int = 30
    is_terminal: Callable[[JobResult], bool] = field(default=_is_terminal)

    @classmethod
    def from_settings(cls) -> "RetryPolicy":
        return cls(interval_sec=settings.poll_interval_sec, max_attempts=settings.poll_max_attempts)


def _event_wait(cancel_event: threading.Event, seconds: float) -> bool:
    return cancel_event.wait(seconds)


class JobPoller:
    """Fetches a submitted job on a fixed interval until it is terminal.

    ``wait`` receives the request's cancel event and the interval and returns
    True when the event was set, so tests can swap in an instant clock.
    """

    def __init__(
        self,
        client: UndetectableClient,
        policy: RetryPolicy | None = None,
        wait: Callable[[threading.Event, float], bool] = _event_wait,
    ) -> None:
        self.client = client
        self.policy = policy or RetryPolicy.from_settings()
        self._wait = wait

    def poll_until_done(self, job_id: str, cancel_event: threading.Event | None = None) -> JobResult:
        cancel_event = cancel_event or threading.Event()
        for attempt in range(1, self.policy.max_attempts + 1):
            if cancel_event.is_set():
                raise PollCancelled(job_id)

            try:
                result = self.client.fetch(job_id)
            except FetchError as exc:
                logger.warning("fetch attempt %d for %s failed: %s", attempt, job_id, exc)
                result = None

            if result is not None and self.policy.is_terminal(result):
                if result.error:
                    raise JobError(job_id, result.error)
                logger.info("document %s ready after %d attempts", job_id, attempt)
                return result

            if attempt < self.policy.max_attempts and self._wait(cancel_event, self.policy.interval_sec):
                raise PollCancelled(job_id)

        raise PollTimeout(job_id, self.policy.max_attempts)
