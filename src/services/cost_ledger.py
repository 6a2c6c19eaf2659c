"""
CostLedger - append-only record of priced external calls.
"""
import logging
from datetime import datetime, timedelta
from typing import Callable, List, Optional

import aiosqlite

from core.entities import CostRecord
from services.database import Database, from_db_timestamp, to_db_timestamp, utc_now

logger = logging.getLogger(__name__)


def utc_day_bounds(now: datetime):
    start = now.replace(hour=0, minute=0, second=0, microsecond=0)
    return start, start + timedelta(days=1)


class CostLedger:
    """
    Writes one CostRecord per priced call into api_usage_tracking and answers
    "what has been spent today" over the current UTC day.
    """

    def __init__(self, database: Database, clock: Callable[[], datetime] = utc_now):
        self.db = database
        self.clock = clock

    async def record(
        self,
        *,
        api: str,
        operation_type: str,
        tokens_or_units: int,
        cost_estimate: float,
        user_id: Optional[str] = None,
    ) -> Optional[CostRecord]:
        """
        Append a cost record. Write failures are logged and swallowed.
        """
        record = CostRecord(
            api=api,
            operation_type=operation_type,
            tokens_or_units=int(tokens_or_units),
            cost_estimate=float(cost_estimate),
            timestamp=self.clock(),
            user_id=user_id,
        )
        try:
            await self.db.initialize()
            await self.db.execute(
                """
                INSERT INTO api_usage_tracking
                (api_name, operation_type, tokens_used, cost_estimate, user_id, timestamp)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    record.api,
                    record.operation_type,
                    record.tokens_or_units,
                    record.cost_estimate,
                    record.user_id,
                    to_db_timestamp(record.timestamp),
                ),
            )
        except Exception as e:
            logger.error(f"Failed to track API usage for {api}/{operation_type}: {e}")
            return None

        logger.debug(f"Recorded cost: {api}/{operation_type} ${record.cost_estimate:.4f}")
        return record

    async def daily_spend(self, now: Optional[datetime] = None) -> float:
        """Sum of cost_estimate over the current UTC day. Read errors propagate."""
        start, end = utc_day_bounds(now or self.clock())
        await self.db.initialize()
        row = await self.db.fetchone(
            "SELECT COALESCE(SUM(cost_estimate), 0.0) FROM api_usage_tracking WHERE timestamp >= ? AND timestamp < ?",
            (to_db_timestamp(start), to_db_timestamp(end)),
        )
        return float(row[0]) if row else 0.0

    async def records_for_day(self, now: Optional[datetime] = None) -> List[CostRecord]:
        start, end = utc_day_bounds(now or self.clock())
        await self.db.initialize()
        try:
            rows = await self.db.fetchall(
                """SELECT api_name, operation_type, tokens_used, cost_estimate, timestamp, user_id
                   FROM api_usage_tracking
                   WHERE timestamp >= ? AND timestamp < ?
                   ORDER BY timestamp ASC""",
                (to_db_timestamp(start), to_db_timestamp(end)),
            )
        except aiosqlite.Error as e:
            logger.error(f"Failed to read usage records: {e}")
            return []

        return [
            CostRecord(
                api=row["api_name"],
                operation_type=row["operation_type"],
                tokens_or_units=row["tokens_used"],
                cost_estimate=row["cost_estimate"],
                timestamp=from_db_timestamp(row["timestamp"]),
                user_id=row["user_id"],
            )
            for row in rows
        ]
