import threading

import pytest
from conftest import FakeClient, no_wait

from text_humanizer.poller import JobError, JobPoller, PollCancelled, PollTimeout, RetryPolicy
from text_humanizer.undetectable import FetchError, JobResult


def _poller(client, max_attempts=30, wait=no_wait) -> JobPoller:
    return JobPoller(client, RetryPolicy(interval_sec=5, max_attempts=max_attempts), wait=wait)


def test_returns_first_terminal_output() -> None:
    client = FakeClient(results=[JobResult(id="abc", output="humanized text")])
    result = _poller(client).poll_until_done("abc")
    assert result.output == "humanized text"
    assert client.fetched == ["abc"]


def test_waits_between_pending_attempts() -> None:
    waits = []

    def record_wait(event, seconds):
        waits.append(seconds)
        return False

    client = FakeClient(results=[JobResult(id="abc"), JobResult(id="abc"), JobResult(id="abc", output="done")])
    result = _poller(client, wait=record_wait).poll_until_done("abc")

    assert result.output == "done"
    assert len(client.fetched) == 3
    assert waits == [5, 5]


def test_job_error_stops_immediately() -> None:
    client = FakeClient(results=[JobResult(id="abc", error="document failed"), JobResult(id="abc", output="late")])
    with pytest.raises(JobError) as exc_info:
        _poller(client).poll_until_done("abc")
    assert exc_info.value.error == "document failed"
    assert len(client.fetched) == 1


def test_times_out_after_max_attempts() -> None:
    client = FakeClient(job_id="xyz")
    with pytest.raises(PollTimeout) as exc_info:
        _poller(client).poll_until_done("xyz")
    assert exc_info.value.job_id == "xyz"
    assert exc_info.value.attempts == 30
    assert len(client.fetched) == 30


def test_fetch_errors_count_as_attempts() -> None:
    client = FakeClient(results=[FetchError("http_502"), JobResult(id="abc", output="ok")])
    assert _poller(client).poll_until_done("abc").output == "ok"
    assert len(client.fetched) == 2


def test_cancelled_before_first_fetch() -> None:
    client = FakeClient()
    event = threading.Event()
    event.set()
    with pytest.raises(PollCancelled):
        _poller(client).poll_until_done("abc", cancel_event=event)
    assert client.fetched == []


def test_cancel_during_wait_only_stops_that_poll() -> None:
    cancelled = threading.Event()
    other = threading.Event()

    def cancel_on_wait(event, seconds):
        cancelled.set()
        return event.is_set()

    client = FakeClient()
    poller = _poller(client, max_attempts=3, wait=cancel_on_wait)
    with pytest.raises(PollCancelled):
        poller.poll_until_done("abc", cancel_event=cancelled)

    done = FakeClient(results=[JobResult(id="def", output="ok")])
    assert _poller(done).poll_until_done("def", cancel_event=other).output == "ok"
    assert not other.is_set()


def test_custom_terminal_predicate() -> None:
    policy = RetryPolicy(interval_sec=0, max_attempts=5, is_terminal=lambda r: r.input == "stop")
    client = FakeClient(results=[JobResult(id="abc"), JobResult(id="abc", input="stop")])
    result = JobPoller(client, policy, wait=no_wait).poll_until_done("abc")
    assert result.input == "stop"
