"""
storyline/features/entitlements/store.py

Entitlement store: plan tier, custom premium override and credit balance.

Every operation is one short transaction whose write is a single UPDATE
statement, so the database serializes concurrent callers (last write wins).
Records are created lazily with basic defaults on first access. Committed
writes are announced on the token event bus.
"""

from typing import Optional
import logging

from sqlalchemy import select, insert, update
from sqlalchemy.exc import IntegrityError

from storyline.core.config import settings
from storyline.core.database import get_db_session, user_status, utcnow
from storyline.core.errors import InsufficientCreditsError, NotFoundError, ValidationError
from storyline.core.metrics import credit_operations_total
from storyline.models.entitlement import (
    EntitlementRecord,
    OperationResult,
    Plan,
    PlanChange,
    PLAN_BASIC,
    PLAN_PREMIUM,
)
from storyline.realtime.bus import TokenEventBus

logger = logging.getLogger(__name__)


class EntitlementStore:
    def __init__(self, bus: Optional[TokenEventBus] = None, initial_credit_balance: Optional[int] = None):
        self.bus = bus
        self.initial_credit_balance = (
            settings.INITIAL_CREDIT_BALANCE if initial_credit_balance is None else initial_credit_balance
        )

    # -- reads -------------------------------------------------------------

    def get_record(self, user_id: str) -> EntitlementRecord:
        self._ensure_record(user_id)
        with get_db_session() as session:
            row = session.execute(
                select(user_status).where(user_status.c.user_id == user_id)
            ).first()
        if row is None:
            raise NotFoundError(f"No entitlement record for user {user_id}")
        return EntitlementRecord(
            user_id=row.user_id,
            plan_indicator=row.plan_indicator,
            custom_premium=row.custom_premium,
            credit_balance=row.credit_balance,
            updated_at=row.updated_at,
        )

    def get_effective_plan(self, user_id: str) -> Plan:
        """custom_premium == 1 wins; otherwise premium iff plan_indicator == 1."""
        return self.get_record(user_id).effective_plan

    def is_custom_premium(self, user_id: str) -> bool:
        return self.get_record(user_id).custom_premium == 1

    # -- plan tier ---------------------------------------------------------

    def set_plan(self, user_id: str, indicator: int, source: str = "set_plan") -> int:
        """Idempotent write of the plan indicator. Returns the stored indicator."""
        if indicator not in (PLAN_BASIC, PLAN_PREMIUM):
            raise ValidationError(f"plan indicator must be 0 or 1, got {indicator}")
        return self._write_plan(
            user_id,
            update(user_status).values(plan_indicator=indicator, updated_at=utcnow()),
            source,
        )

    def make_user_premium(self, user_id: str) -> int:
        return self.set_plan(user_id, PLAN_PREMIUM, source="make_user_premium")

    def make_user_basic(self, user_id: str) -> int:
        return self.set_plan(user_id, PLAN_BASIC, source="make_user_basic")

    def toggle_user_premium(self, user_id: str) -> int:
        return self._write_plan(
            user_id,
            update(user_status).values(
                plan_indicator=PLAN_PREMIUM - user_status.c.plan_indicator,
                updated_at=utcnow(),
            ),
            "toggle_user_premium",
        )

    def toggle_custom_premium(self, user_id: str) -> int:
        """Admin/debug only. Returns the new custom_premium flag."""
        self._ensure_record(user_id)
        with get_db_session() as session:
            row = session.execute(
                update(user_status)
                .where(user_status.c.user_id == user_id)
                .values(custom_premium=1 - user_status.c.custom_premium, updated_at=utcnow())
                .returning(user_status.c.custom_premium, user_status.c.plan_indicator, user_status.c.credit_balance)
            ).one()
        logger.warning(
            "[entitlement] custom premium toggled",
            extra={"user_id": user_id, "custom_premium": row.custom_premium},
        )
        self._publish(user_id, row.plan_indicator, row.credit_balance, "toggle_custom_premium")
        return row.custom_premium

    # -- credits -----------------------------------------------------------

    def deduct_user_tokens(self, user_id: str, amount: int) -> int:
        """
        Deduct credits and return the resulting balance.

        A negative amount is a refund. Raises InsufficientCreditsError when the
        balance cannot cover a positive amount; the balance is left untouched.
        """
        self._ensure_record(user_id)
        stmt = (
            update(user_status)
            .where(user_status.c.user_id == user_id)
            .values(credit_balance=user_status.c.credit_balance - amount, updated_at=utcnow())
            .returning(user_status.c.credit_balance, user_status.c.plan_indicator)
        )
        if amount > 0:
            stmt = stmt.where(user_status.c.credit_balance >= amount)
        with get_db_session() as session:
            row = session.execute(stmt).first()
        operation = "refund" if amount < 0 else "deduct"
        if row is None:
            credit_operations_total.inc(labels={"operation": operation, "outcome": "insufficient"})
            raise InsufficientCreditsError(f"Not enough credits to deduct {amount}")
        credit_operations_total.inc(labels={"operation": operation, "outcome": "ok"})
        logger.info(
            "[entitlement] credits %s", operation,
            extra={"user_id": user_id, "amount": amount, "balance": row.credit_balance},
        )
        self._publish(user_id, row.plan_indicator, row.credit_balance, f"deduct_user_tokens:{amount}")
        return row.credit_balance

    def add_user_tokens(self, user_id: str, amount: int) -> int:
        if amount < 0:
            raise ValidationError("amount must be non-negative; deduct_user_tokens handles removals")
        self._ensure_record(user_id)
        with get_db_session() as session:
            row = session.execute(
                update(user_status)
                .where(user_status.c.user_id == user_id)
                .values(credit_balance=user_status.c.credit_balance + amount, updated_at=utcnow())
                .returning(user_status.c.credit_balance, user_status.c.plan_indicator)
            ).one()
        credit_operations_total.inc(labels={"operation": "add", "outcome": "ok"})
        self._publish(user_id, row.plan_indicator, row.credit_balance, f"add_user_tokens:{amount}")
        return row.credit_balance

    def deduct_tokens(self, user_id: str, amount: int) -> OperationResult[int]:
        """deduct_user_tokens as a typed result; failures never raise."""
        try:
            return OperationResult.ok(self.deduct_user_tokens(user_id, amount))
        except InsufficientCreditsError as e:
            return OperationResult.fail(e.message)
        except Exception as e:
            logger.error("[entitlement] deduct failed", exc_info=True, extra={"user_id": user_id})
            return OperationResult.fail(str(e))

    def refund_tokens(self, user_id: str, amount: int) -> OperationResult[int]:
        """Undo a tentative deduction using the negative-deduct convention."""
        return self.deduct_tokens(user_id, -abs(amount))

    # -- internals ---------------------------------------------------------

    def _ensure_record(self, user_id: str) -> None:
        with get_db_session() as session:
            exists = session.execute(
                select(user_status.c.user_id).where(user_status.c.user_id == user_id)
            ).first()
        if exists:
            return
        now = utcnow()
        try:
            with get_db_session() as session:
                session.execute(
                    insert(user_status).values(
                        user_id=user_id,
                        plan_indicator=PLAN_BASIC,
                        custom_premium=0,
                        credit_balance=self.initial_credit_balance,
                        created_at=now,
                        updated_at=now,
                    )
                )
        except IntegrityError:
            # Another request created it first
            pass

    def _write_plan(self, user_id: str, stmt, source: str) -> int:
        self._ensure_record(user_id)
        with get_db_session() as session:
            row = session.execute(
                stmt.where(user_status.c.user_id == user_id)
                .returning(user_status.c.plan_indicator, user_status.c.credit_balance)
            ).one()
        logger.info(
            "[entitlement] plan written",
            extra={"user_id": user_id, "plan_indicator": row.plan_indicator, "source": source},
        )
        self._publish(user_id, row.plan_indicator, row.credit_balance, source)
        return row.plan_indicator

    def _publish(self, user_id: str, plan_indicator: int, credit_balance: int, source: str) -> None:
        if self.bus is None:
            return
        self.bus.publish(PlanChange(
            user_id=user_id,
            plan_indicator=plan_indicator,
            credit_balance=credit_balance,
            source=source,
        ))
