import logging
import math
import sqlite3

from text_humanizer import db
from text_humanizer.config import settings
from text_humanizer.db import PersistError
from text_humanizer.errors import EmptyInput
from text_humanizer.schemas import User

logger = logging.getLogger(__name__)

# tier -> monthly credit allowance
PLAN_CREDITS = {
    "free": 100,
    "basic": 1000,
    "premium": 5000,
    "enterprise": 20000,
}


def required_credits(text: str) -> int:
    if not text or not text.strip():
        raise EmptyInput()
    return max(1, math.ceil(len(text) / settings.chars_per_credit))


class CreditLedger:
    def get_user(self, user_id: str) -> User | None:
        try:
            row = db.get_user(user_id)
        except sqlite3.Error as exc:
            raise PersistError(str(exc)) from exc
        return User(**row) if row else None

    def check_sufficient(self, user: User, required: int) -> bool:
        return user.credits_used + required <= user.max_credits

    def shortfall(self, user: User, required: int) -> int:
        return max(user.credits_used + required - user.max_credits, 0)

    def commit(self, user: User, required: int, job_id: str | None = None) -> User:
        """Charge ``required`` credits to ``user`` and return the stored row.

        ``job_id`` is passed through to the store as the idempotency key of
        the charge; a repeated commit for the same job leaves usage as is.
        """
        try:
            applied = db.charge_credits(user.id, required, job_id=job_id)
            row = db.get_user(user.id)
        except sqlite3.Error as exc:
            raise PersistError(str(exc)) from exc
        if not applied:
            logger.info("charge for job %s already applied to user %s", job_id, user.id)
        if row is None:
            raise PersistError(f"user_not_found: {user.id}")
        return User(**row)

    def is_committed(self, job_id: str) -> bool:
        try:
            return db.has_charge(job_id)
        except sqlite3.Error as exc:
            raise PersistError(str(exc)) from exc

    def change_subscription(self, user_id: str, tier: str) -> User:
        if tier not in PLAN_CREDITS:
            raise ValueError(f"unknown subscription tier: {tier}")
        try:
            db.update_user(user_id, {"subscription_tier": tier, "max_credits": PLAN_CREDITS[tier]})
            db.add_ledger(user_id, "plan", PLAN_CREDITS[tier], note=f"subscription changed to {tier}")
            row = db.get_user(user_id)
        except sqlite3.Error as exc:
            raise PersistError(str(exc)) from exc
        if row is None:
            raise PersistError(f"user_not_found: {user_id}")
        return User(**row)
