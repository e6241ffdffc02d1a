import asyncio
import logging
import threading
from typing import Annotated

from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.concurrency import run_in_threadpool

from text_humanizer.config import settings
from text_humanizer.db import PersistError, create_user, get_job, init_db, list_ledger, reset_credits_used
from text_humanizer.errors import (
    InsufficientCredits,
    ProjectAccessDenied,
    ProjectNotFound,
    SaveFailed,
    Unauthenticated,
    ValidationError,
)
from text_humanizer.ledger import CreditLedger
from text_humanizer.orchestrator import HumanizationOrchestrator, failure_code
from text_humanizer.poller import JobError, JobPoller, PollCancelled, PollTimeout
from text_humanizer.projects import ProjectRepository
from text_humanizer.schemas import (
    AdminResetRequest,
    CreditBalanceResponse,
    HumanizeRequest,
    HumanizeResponse,
    JobStatusResponse,
    Project,
    ProjectCreateRequest,
    ProjectUpdateRequest,
    SignupRequest,
    SubscriptionRequest,
)
from text_humanizer.undetectable import AuthError, BadRequestError, HumanizerError, UndetectableClient

logging.basicConfig(level=settings.log_level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

app = FastAPI(title="Text Humanizer", version=settings.app_version)
init_db()


def envelope(data: dict | list, status: str = "ok", error: dict | None = None) -> dict:
    return {
        "status": status,
        "data": data,
        "meta": {"model_version": settings.app_version, "latency_ms": 0},
        "error": error,
    }


def get_ledger() -> CreditLedger:
    return CreditLedger()


def get_projects() -> ProjectRepository:
    return ProjectRepository()


def get_orchestrator() -> HumanizationOrchestrator:
    client = UndetectableClient()
    return HumanizationOrchestrator(
        client=client,
        poller=JobPoller(client),
        ledger=CreditLedger(),
        projects=ProjectRepository(),
    )


def _require_admin(x_admin_token: Annotated[str | None, Header()] = None) -> None:
    if not settings.admin_api_token:
        raise HTTPException(status_code=500, detail="ADMIN_API_TOKEN is not configured")
    if x_admin_token != settings.admin_api_token:
        raise HTTPException(status_code=401, detail="Invalid admin token")


def _require_user(x_user_id: str | None) -> str:
    if not x_user_id:
        raise HTTPException(status_code=401, detail="You must be logged in to use this feature")
    return x_user_id


def _owned_project(project_id: str, user_id: str, projects: ProjectRepository) -> Project:
    project = projects.get(project_id)
    if project is None:
        raise HTTPException(status_code=404, detail="Project not found")
    if project.user_id != user_id:
        raise HTTPException(status_code=403, detail="You do not own this project")
    return project


def _http_error(exc: Exception) -> HTTPException:
    detail: dict = {"code": failure_code(exc), "message": str(exc)}
    if isinstance(exc, Unauthenticated):
        return HTTPException(status_code=401, detail=detail)
    if isinstance(exc, ProjectAccessDenied):
        return HTTPException(status_code=403, detail=detail)
    if isinstance(exc, ProjectNotFound):
        return HTTPException(status_code=404, detail=detail)
    if isinstance(exc, ValidationError):
        return HTTPException(status_code=400, detail=detail)
    if isinstance(exc, InsufficientCredits):
        detail.update(required=exc.required, available=exc.available, shortfall=exc.shortfall)
        return HTTPException(status_code=402, detail=detail)
    if isinstance(exc, BadRequestError):
        return HTTPException(status_code=422, detail=detail)
    if isinstance(exc, (AuthError, HumanizerError)):
        return HTTPException(status_code=502, detail=detail)
    if isinstance(exc, PollTimeout):
        detail.update(job_id=exc.job_id)
        return HTTPException(status_code=504, detail=detail)
    if isinstance(exc, (JobError, PollCancelled)):
        detail.update(job_id=exc.job_id)
        return HTTPException(status_code=502, detail=detail)
    if isinstance(exc, SaveFailed):
        detail.update(job_id=exc.job_id, humanized_text=exc.humanized_text)
        return HTTPException(status_code=500, detail=detail)
    return HTTPException(status_code=500, detail=detail)


@app.get("/health")
def health() -> dict:
    return envelope({"service": "text-humanizer"})


@app.get("/version")
def version() -> dict:
    return envelope({"service": "text-humanizer", "version": settings.app_version})


@app.post("/v1/users")
def signup(payload: SignupRequest, ledger: CreditLedger = Depends(get_ledger)) -> dict:
    try:
        row = create_user(payload.username, full_name=payload.full_name, avatar_url=payload.avatar_url)
    except ValueError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    user = ledger.get_user(row["id"])
    return envelope(user.model_dump())


@app.get("/v1/users/{user_id}")
def get_profile(user_id: str, ledger: CreditLedger = Depends(get_ledger)) -> dict:
    user = ledger.get_user(user_id)
    if user is None:
        raise HTTPException(status_code=404, detail="User not found")
    return envelope(user.model_dump())


@app.post("/v1/users/{user_id}/subscription")
def change_subscription(
    user_id: str,
    payload: SubscriptionRequest,
    x_user_id: Annotated[str | None, Header()] = None,
    ledger: CreditLedger = Depends(get_ledger),
) -> dict:
    if _require_user(x_user_id) != user_id:
        raise HTTPException(status_code=403, detail="You can only change your own subscription")
    if ledger.get_user(user_id) is None:
        raise HTTPException(status_code=404, detail="User not found")
    user = ledger.change_subscription(user_id, payload.tier)
    return envelope(user.model_dump())


@app.get("/v1/credits/{user_id}")
def get_credits(user_id: str, ledger: CreditLedger = Depends(get_ledger)) -> dict:
    user = ledger.get_user(user_id)
    if user is None:
        raise HTTPException(status_code=404, detail="User not found")

    balance = CreditBalanceResponse(
        user_id=user.id,
        credits_used=user.credits_used,
        max_credits=user.max_credits,
        available_credits=user.available_credits,
        subscription_tier=user.subscription_tier,
    ).model_dump()
    return envelope({"balance": balance, "recent_ledger": list_ledger(user_id, limit=20)})


@app.post("/v1/admin/credits/reset")
def admin_reset_credits(payload: AdminResetRequest, x_admin_token: Annotated[str | None, Header()] = None) -> dict:
    _require_admin(x_admin_token=x_admin_token)
    reset = reset_credits_used(payload.user_id, note=payload.note)
    return envelope({"users_reset": reset})


@app.get("/v1/projects")
def list_projects(
    x_user_id: Annotated[str | None, Header()] = None,
    projects: ProjectRepository = Depends(get_projects),
) -> dict:
    user_id = _require_user(x_user_id)
    return envelope([p.model_dump() for p in projects.list(user_id)])


@app.post("/v1/projects")
def create_project(
    payload: ProjectCreateRequest,
    x_user_id: Annotated[str | None, Header()] = None,
    projects: ProjectRepository = Depends(get_projects),
) -> dict:
    user_id = _require_user(x_user_id)
    project = projects.create(user_id, payload.title, payload.content)
    return envelope(project.model_dump())


@app.get("/v1/projects/{project_id}")
def get_project(
    project_id: str,
    x_user_id: Annotated[str | None, Header()] = None,
    projects: ProjectRepository = Depends(get_projects),
) -> dict:
    project = _owned_project(project_id, _require_user(x_user_id), projects)
    return envelope(project.model_dump())


@app.patch("/v1/projects/{project_id}")
def update_project(
    project_id: str,
    payload: ProjectUpdateRequest,
    x_user_id: Annotated[str | None, Header()] = None,
    projects: ProjectRepository = Depends(get_projects),
) -> dict:
    _owned_project(project_id, _require_user(x_user_id), projects)
    try:
        projects.update(project_id, payload.model_dump(exclude_unset=True))
    except PersistError as exc:
        raise HTTPException(status_code=500, detail=f"Failed to save project: {exc}") from exc
    return envelope(projects.get(project_id).model_dump())


@app.delete("/v1/projects/{project_id}")
def delete_project(
    project_id: str,
    x_user_id: Annotated[str | None, Header()] = None,
    projects: ProjectRepository = Depends(get_projects),
) -> dict:
    _owned_project(project_id, _require_user(x_user_id), projects)
    projects.delete(project_id)
    return envelope({"deleted": project_id})


async def _run_until_disconnect(request: Request, cancel_event: threading.Event, fn, *args):
    """Run blocking ``fn`` in the threadpool, setting ``cancel_event`` if the client goes away."""
    work = asyncio.ensure_future(run_in_threadpool(fn, *args))
    while not work.done():
        await asyncio.wait({work}, timeout=settings.disconnect_check_sec)
        if not work.done() and not cancel_event.is_set() and await request.is_disconnected():
            logger.info("client disconnected, cancelling humanize poll")
            cancel_event.set()
    return work.result()


@app.post("/v1/humanize")
async def humanize(
    request: Request,
    payload: HumanizeRequest,
    x_user_id: Annotated[str | None, Header()] = None,
    orchestrator: HumanizationOrchestrator = Depends(get_orchestrator),
) -> dict:
    cancel_event = threading.Event()
    try:
        outcome = await _run_until_disconnect(request, cancel_event, orchestrator.humanize, x_user_id, payload, cancel_event)
    except (
        ValidationError,
        ProjectNotFound,
        InsufficientCredits,
        HumanizerError,
        PollTimeout,
        JobError,
        PollCancelled,
        SaveFailed,
        PersistError,
    ) as exc:
        logger.info("humanize request failed: %s", exc)
        raise _http_error(exc) from exc

    response = HumanizeResponse(
        humanized_text=outcome.humanized_text,
        document_id=outcome.document_id,
        credits_charged=outcome.credits_charged,
        credits_used=outcome.user.credits_used,
        max_credits=outcome.user.max_credits,
        project=outcome.project,
    )
    return envelope(response.model_dump())


@app.get("/v1/humanize/jobs/{job_id}")
def get_humanize_job(job_id: str, x_user_id: Annotated[str | None, Header()] = None) -> dict:
    user_id = _require_user(x_user_id)
    job = get_job(job_id)
    if not job:
        raise HTTPException(status_code=404, detail="Job not found")
    if job["user_id"] != user_id:
        raise HTTPException(status_code=403, detail="You do not own this job")
    return envelope(JobStatusResponse(**job).model_dump())
