import logging

from text_humanizer.db import init_db, list_jobs_by_status
from text_humanizer.errors import SaveFailed, Unauthenticated
from text_humanizer.ledger import CreditLedger
from text_humanizer.orchestrator import HumanizationOrchestrator
from text_humanizer.poller import JobError, JobPoller
from text_humanizer.projects import ProjectRepository
from text_humanizer.undetectable import FetchError, UndetectableClient

logger = logging.getLogger(__name__)


def main(orchestrator: HumanizationOrchestrator | None = None) -> dict:
    if orchestrator is None:
        client = UndetectableClient()
        orchestrator = HumanizationOrchestrator(
            client=client,
            poller=JobPoller(client),
            ledger=CreditLedger(),
            projects=ProjectRepository(),
        )

    counts = {"settled": 0, "failed": 0, "pending": 0, "errors": 0}
    for job in list_jobs_by_status("timed_out") + list_jobs_by_status("save_failed"):
        try:
            outcome = orchestrator.reconcile(job)
        except JobError:
            counts["failed"] += 1
            continue
        except (FetchError, SaveFailed, Unauthenticated) as exc:
            logger.warning("could not settle %s: %s", job["job_id"], exc)
            counts["errors"] += 1
            continue
        if outcome is None:
            counts["pending"] += 1
        else:
            counts["settled"] += 1

    print(
        f"Timed out jobs settled: {counts['settled']}, failed: {counts['failed']}, "
        f"still pending: {counts['pending']}, errors: {counts['errors']}"
    )
    return counts


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    init_db()
    main()
