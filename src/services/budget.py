"""
BudgetGuard - admission control for paid operations.
"""
import logging
from enum import Enum

from services.config import BudgetConfig
from services.cost_ledger import CostLedger

logger = logging.getLogger(__name__)


class BudgetStatus(str, Enum):
    OK = "ok"
    SOFT_LIMIT = "soft_limit"
    HARD_LIMIT = "hard_limit"


class BudgetGuard:
    """
    Maps today's spend onto OK / SOFT_LIMIT / HARD_LIMIT.

    Cost is recorded after each call completes, so spend may overshoot the
    hard limit by at most the calls already in flight.
    """

    def __init__(self, ledger: CostLedger, budget: BudgetConfig):
        self.ledger = ledger
        self.budget = budget

    async def check_budget(self) -> BudgetStatus:
        try:
            spent = await self.ledger.daily_spend()
        except Exception as e:
            # Unknown spend: allow free work only
            logger.error(f"Budget check failed, assuming soft limit: {e}")
            return BudgetStatus.SOFT_LIMIT

        if spent >= self.budget.daily_hard_limit:
            logger.error(
                f"Hard budget limit reached: ${spent:.2f} >= ${self.budget.daily_hard_limit:.2f}"
            )
            return BudgetStatus.HARD_LIMIT

        if spent >= self.budget.daily_soft_limit:
            logger.warning(
                f"Soft budget limit reached: ${spent:.2f} >= ${self.budget.daily_soft_limit:.2f}"
            )
            return BudgetStatus.SOFT_LIMIT

        logger.info(
            f"Daily spend: ${spent:.2f} / ${self.budget.daily_soft_limit:.2f} "
            f"(hard limit ${self.budget.daily_hard_limit:.2f})"
        )
        return BudgetStatus.OK

    async def allows_paid_call(self) -> bool:
        return await self.check_budget() is not BudgetStatus.HARD_LIMIT
