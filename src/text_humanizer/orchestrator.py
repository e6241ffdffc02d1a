import enum
import logging
import sqlite3
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from text_humanizer import db
from text_humanizer.config import settings
from text_humanizer.db import PersistError
from text_humanizer.errors import (
    EmptyInput,
    InsufficientCredits,
    ProjectAccessDenied,
    ProjectNotFound,
    SaveFailed,
    TooShort,
    Unauthenticated,
)
from text_humanizer.ledger import CreditLedger, required_credits
from text_humanizer.poller import JobError, JobPoller, PollCancelled, PollTimeout
from text_humanizer.projects import ProjectRepository
from text_humanizer.schemas import HumanizeRequest, Project, User
from text_humanizer.undetectable import JobResult, UndetectableClient, parameters_for

logger = logging.getLogger(__name__)


class HumanizeState(str, enum.Enum):
    IDLE = "idle"
    VALIDATING = "validating"
    CREDIT_CHECK = "credit_check"
    SUBMITTED = "submitted"
    POLLING = "polling"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


@dataclass
class HumanizeOutcome:
    humanized_text: str
    document_id: str
    credits_charged: int
    user: User
    project: Project
    state: HumanizeState = HumanizeState.SUCCEEDED


def failure_code(exc: Exception) -> str:
    return str(getattr(exc, "code", "UNKNOWN_ERROR"))


class HumanizationOrchestrator:
    """Runs one humanize request from validation to a saved project.

    Credits are charged only after the remote job reports output, and the
    charge is keyed by the remote document id so the commit-and-save step can
    be retried without charging twice.
    """

    def __init__(
        self,
        client: UndetectableClient,
        poller: JobPoller,
        ledger: CreditLedger,
        projects: ProjectRepository,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.client = client
        self.poller = poller
        self.ledger = ledger
        self.projects = projects
        self._sleep = sleep

    def humanize(
        self,
        user_id: str | None,
        request: HumanizeRequest,
        cancel_event: threading.Event | None = None,
    ) -> HumanizeOutcome:
        text = request.text
        self._transition(None, HumanizeState.VALIDATING)
        if not text or not text.strip():
            raise EmptyInput()
        if len(text) < settings.min_text_chars:
            raise TooShort(len(text), settings.min_text_chars)
        if not user_id:
            raise Unauthenticated()
        user = self.ledger.get_user(user_id)
        if user is None:
            raise Unauthenticated()

        existing = None
        if request.project_id:
            existing = self.projects.get(request.project_id)
            if existing is None:
                raise ProjectNotFound(request.project_id)
            if existing.user_id != user.id:
                raise ProjectAccessDenied(request.project_id)

        self._transition(None, HumanizeState.CREDIT_CHECK)
        required = required_credits(text)
        if not self.ledger.check_sufficient(user, required):
            raise InsufficientCredits(
                required=required,
                available=user.available_credits,
                shortfall=self.ledger.shortfall(user, required),
            )

        params = parameters_for(request.mode, request.options.humanization_strength)
        handle = self.client.submit(text, params)
        job_id = handle.id
        self._transition(job_id, HumanizeState.SUBMITTED)
        self._outbox(db.record_job, job_id, user.id, required, existing.id if existing else None)

        self._transition(job_id, HumanizeState.POLLING)
        try:
            result = self.poller.poll_until_done(job_id, cancel_event=cancel_event)
        except PollTimeout as exc:
            self._transition(job_id, HumanizeState.TIMED_OUT)
            self._outbox(db.update_job_status, job_id, "timed_out", error=str(exc), failure_reason_code=exc.code)
            if existing is not None:
                self._remember_document(existing.id, job_id)
            raise
        except (JobError, PollCancelled) as exc:
            self._transition(job_id, HumanizeState.FAILED)
            status = "cancelled" if isinstance(exc, PollCancelled) else "failed"
            self._outbox(db.update_job_status, job_id, status, error=str(exc), failure_reason_code=exc.code)
            raise

        self._outbox(db.update_job_status, job_id, "completed")
        fields: dict[str, Any] = {"content": text, "mode": request.mode}
        if request.title is not None:
            fields["title"] = request.title
        fields.update(request.options.model_dump(exclude_none=True))
        outcome = self._commit_and_persist(
            user=user,
            required=required,
            job_id=job_id,
            result=result,
            project_id=existing.id if existing else None,
            fields=fields,
        )
        self._transition(job_id, HumanizeState.SUCCEEDED)
        return outcome

    def reconcile(self, job: dict) -> HumanizeOutcome | None:
        """Re-check a job that timed out locally and settle it if it finished.

        Returns None while the remote job is still pending.
        """
        job_id = job["job_id"]
        result = self.client.fetch(job_id)
        if not result.is_terminal:
            return None
        if result.error:
            db.update_job_status(job_id, "failed", error=result.error, failure_reason_code=JobError.code)
            raise JobError(job_id, result.error)

        user = self.ledger.get_user(job["user_id"])
        if user is None:
            raise Unauthenticated(f"user {job['user_id']} no longer exists")
        outcome = self._commit_and_persist(
            user=user,
            required=int(job["credits_required"]),
            job_id=job_id,
            result=result,
            project_id=job.get("project_id"),
            fields={} if job.get("project_id") else {"title": "Untitled Project", "content": result.input},
        )
        logger.info("reconciled document %s for user %s", job_id, user.id)
        return outcome

    def _commit_and_persist(
        self,
        user: User,
        required: int,
        job_id: str,
        result: JobResult,
        project_id: str | None,
        fields: dict[str, Any],
    ) -> HumanizeOutcome:
        updates = dict(fields)
        updates.update(
            {
                "humanized_content": result.output,
                "credits_used": required,
                "humanization_document_id": job_id,
            }
        )
        last_err: PersistError | None = None

        for attempt in range(1, settings.persist_retries + 1):
            try:
                charged_user = self.ledger.commit(user, required, job_id=job_id)
                if project_id is None or self.projects.get(project_id) is None:
                    project_id = self.projects.create(
                        user.id, fields.get("title") or "Untitled Project", fields.get("content") or result.input
                    ).id
                self.projects.update(project_id, updates)
                project = self.projects.get(project_id)
                if project is None:
                    raise PersistError(f"project_not_found: {project_id}")
            except PersistError as exc:
                last_err = exc
                logger.warning("commit/save attempt %d for %s failed: %s", attempt, job_id, exc)
                if attempt < settings.persist_retries:
                    self._sleep(0.5 * attempt)
                continue

            self._outbox(db.update_job_status, job_id, "committed", project_id=project.id)
            return HumanizeOutcome(
                humanized_text=result.output,
                document_id=job_id,
                credits_charged=required,
                user=charged_user,
                project=project,
            )

        assert last_err is not None
        self._outbox(
            db.update_job_status,
            job_id,
            "save_failed",
            error=str(last_err),
            failure_reason_code=SaveFailed.code,
            project_id=project_id,
        )
        raise SaveFailed(result.output, job_id, str(last_err)) from last_err

    def _remember_document(self, project_id: str, job_id: str) -> None:
        try:
            self.projects.update(project_id, {"humanization_document_id": job_id})
        except PersistError:
            logger.exception("could not record document %s on project %s", job_id, project_id)

    def _outbox(self, fn: Callable[..., None], *args: Any, **kwargs: Any) -> None:
        try:
            fn(*args, **kwargs)
        except sqlite3.Error:
            logger.exception("humanize job outbox write failed (%s)", fn.__name__)

    def _transition(self, job_id: str | None, state: HumanizeState) -> None:
        logger.debug("humanize job=%s state=%s", job_id or "-", state.value)
