"""
Per-request audit trail: recoverable-error counts, readiness metrics and the
rag_performance_logs writer.
"""
import json
import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence

from services.database import Database, to_db_timestamp, utc_now

logger = logging.getLogger(__name__)


class StageErrors:
    """
    Counter of recoverable errors keyed "stage:cause".
    """

    def __init__(self):
        self.counts: Counter = Counter()

    def record(self, stage: str, cause: str, detail: Any = None) -> None:
        self.counts[f"{stage}:{cause}"] += 1
        logger.warning(
            f"Recoverable error in {stage} ({cause}): {detail}",
            extra={"stage": stage, "cause": cause},
        )

    def total(self) -> int:
        return sum(self.counts.values())

    def as_dict(self) -> Dict[str, int]:
        return dict(sorted(self.counts.items()))

    def __bool__(self) -> bool:
        return bool(self.counts)


@dataclass
class ReadinessMetrics:
    sources_active: int = 0
    deduplication_rate: float = 0.0
    avg_engagement: float = 0.0

    @classmethod
    def compute(
        cls,
        sources_used: Sequence[str],
        fetched: int,
        unique: int,
        engagement: Sequence[float],
    ) -> "ReadinessMetrics":
        rate = (fetched - unique) / fetched if fetched else 0.0
        avg = sum(engagement) / len(engagement) if engagement else 0.0
        return cls(
            sources_active=len(set(sources_used)),
            deduplication_rate=round(rate, 4),
            avg_engagement=round(avg, 4),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sources_active": self.sources_active,
            "deduplication_rate": self.deduplication_rate,
            "avg_engagement": self.avg_engagement,
        }


@dataclass
class PerformanceEntry:
    operation_type: str
    user_id: Optional[str]
    response_time_ms: int
    source_apis: List[str]
    cache_hit: bool
    success: bool
    quality_tag: str
    error_message: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


class PerformanceLog:
    def __init__(self, database: Database, clock: Callable[[], datetime] = utc_now):
        self.db = database
        self.clock = clock

    async def write(self, entry: PerformanceEntry) -> bool:
        """Append one row. Write failures are logged and swallowed."""
        try:
            await self.db.initialize()
            await self.db.execute(
                """
                INSERT INTO rag_performance_logs
                (operation_type, user_id, response_time_ms, source_apis, cache_hit,
                 success, quality_tag, error_message, metadata, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    entry.operation_type,
                    entry.user_id,
                    entry.response_time_ms,
                    json.dumps(entry.source_apis),
                    int(entry.cache_hit),
                    int(entry.success),
                    entry.quality_tag,
                    entry.error_message,
                    json.dumps(entry.metadata, default=str),
                    to_db_timestamp(self.clock()),
                ),
            )
        except Exception as e:
            logger.error(f"Failed to write performance log: {e}")
            return False
        return True

    async def recent(self, limit: int = 20) -> List[Dict[str, Any]]:
        rows = await self.db.fetchall(
            "SELECT * FROM rag_performance_logs ORDER BY id DESC LIMIT ?",
            (limit,),
        )
        entries = []
        for row in rows:
            entry = dict(row)
            entry["source_apis"] = json.loads(entry["source_apis"] or "[]")
            entry["metadata"] = json.loads(entry["metadata"] or "{}")
            entry["cache_hit"] = bool(entry["cache_hit"])
            entry["success"] = bool(entry["success"])
            entries.append(entry)
        return entries
