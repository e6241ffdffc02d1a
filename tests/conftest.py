import pytest

from text_humanizer import config
from text_humanizer.db import create_user, init_db
from text_humanizer.ledger import CreditLedger
from text_humanizer.orchestrator import HumanizationOrchestrator
from text_humanizer.poller import JobPoller, RetryPolicy
from text_humanizer.projects import ProjectRepository
from text_humanizer.undetectable import JobHandle, JobResult

SAMPLE = (
    "Artificial intelligence tools can draft text quickly, but the result often reads flat. "
    "Editors still need to adjust tone, rhythm and word choice before publishing. "
)


def sample_text(length: int) -> str:
    return (SAMPLE * (length // len(SAMPLE) + 1))[:length]


class FakeClient:
    """Stands in for UndetectableClient; replays queued fetch results."""

    def __init__(self, job_id="abc", results=None, submit_error=None):
        self.job_id = job_id
        self.results = list(results or [])
        self.submit_error = submit_error
        self.submitted = []
        self.fetched = []

    def submit(self, text, parameters):
        if self.submit_error is not None:
            raise self.submit_error
        self.submitted.append((text, parameters))
        return JobHandle(id=self.job_id, status="queued")

    def fetch(self, job_id):
        self.fetched.append(job_id)
        if not self.results:
            return JobResult(id=job_id)
        item = self.results.pop(0) if len(self.results) > 1 else self.results[0]
        if isinstance(item, Exception):
            raise item
        return item


def no_wait(cancel_event, seconds):
    return cancel_event.is_set()


@pytest.fixture(autouse=True)
def _isolated_env(tmp_path, monkeypatch):
    db_path = tmp_path / "humanizer.db"

    monkeypatch.setattr(config.settings, "database_path", str(db_path))
    monkeypatch.setattr(config.settings, "admin_api_token", "test-admin-token")
    monkeypatch.setattr(config.settings, "humanizer_api_key", "test-key")
    monkeypatch.setattr(config.settings, "poll_interval_sec", 0)
    monkeypatch.setattr(config.settings, "poll_max_attempts", 30)
    monkeypatch.setattr(config.settings, "persist_retries", 3)

    init_db()
    yield


@pytest.fixture
def user():
    return create_user("writer")


@pytest.fixture
def make_orchestrator():
    def _make(client, projects=None, ledger=None, max_attempts=30):
        poller = JobPoller(client, RetryPolicy(interval_sec=0, max_attempts=max_attempts), wait=no_wait)
        return HumanizationOrchestrator(
            client=client,
            poller=poller,
            ledger=ledger or CreditLedger(),
            projects=projects or ProjectRepository(),
            sleep=lambda seconds: None,
        )

    return _make
