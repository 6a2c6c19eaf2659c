"""
Base classes for Ingestion
"""
import hashlib
import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import AbstractSet, Any, Dict, List, Optional, TYPE_CHECKING

import httpx
from pydantic import BaseModel, Field, field_validator

from core.sources import ContentType, SourceProfile
from services.database import to_db_timestamp

if TYPE_CHECKING:
    from services.cost_ledger import CostLedger

logger = logging.getLogger(__name__)

_PUNCTUATION = re.compile(r"[^\w\s]", re.UNICODE)
_WHITESPACE = re.compile(r"\s+")
_TAGS = re.compile(r"<[^>]+>")


def normalize_text(text: str) -> str:
    """Lower-case, strip punctuation and collapse whitespace."""
    text = _PUNCTUATION.sub(" ", text.lower())
    return _WHITESPACE.sub(" ", text).strip()


def compute_content_hash(title: str, summary: str) -> str:
    normalized = normalize_text(f"{title} {summary}")
    return hashlib.sha256(normalized.encode("utf-8")).hexdigest()


def strip_html(text: str) -> str:
    return _WHITESPACE.sub(" ", _TAGS.sub(" ", text or "")).strip()


class ContentItem(BaseModel):
    """
    Normalized unit of retrievable content. Every adapter returns this shape.
    """
    id: str
    content_hash: str
    title: str
    summary: str
    source_url: str
    source_name: str
    source_adapter: str
    published_at: datetime
    content_type: ContentType
    engagement_potential: float = Field(..., ge=0.0, le=1.0)
    teams: frozenset[str] = frozenset()

    model_config = {"frozen": True}

    @field_validator("published_at")
    @classmethod
    def _ensure_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    @classmethod
    def create(cls, **fields) -> "ContentItem":
        """Build an item, deriving id and content_hash from title and summary."""
        content_hash = compute_content_hash(fields["title"], fields["summary"])
        return cls(id=content_hash[:16], content_hash=content_hash, **fields)

    def to_metadata(self) -> Dict[str, Any]:
        """Denormalized fields stored alongside the item's embedding."""
        return {
            "title": self.title,
            "summary": self.summary,
            "source_url": self.source_url,
            "source_name": self.source_name,
            "source_api": self.source_adapter,
            "published_at": to_db_timestamp(self.published_at),
            "content_type": self.content_type,
            "engagement_potential": self.engagement_potential,
            "teams": sorted(self.teams),
        }

    @classmethod
    def from_metadata(cls, content_hash: str, metadata: Dict[str, Any]) -> "ContentItem":
        return cls(
            id=content_hash[:16],
            content_hash=content_hash,
            title=metadata.get("title", ""),
            summary=metadata.get("summary", ""),
            source_url=metadata.get("source_url") or "",
            source_name=metadata.get("source_name") or metadata.get("source_api", ""),
            source_adapter=metadata.get("source_api", ""),
            published_at=datetime.fromisoformat(metadata["published_at"]),
            content_type=metadata.get("content_type", "news"),
            engagement_potential=float(metadata.get("engagement_potential", 0.5)),
            teams=frozenset(metadata.get("teams", [])),
        )


@dataclass(frozen=True)
class PartialFailure:
    source: str
    cause: str
    message: str = ""


@dataclass
class FetchResult:
    source: str
    items: List[ContentItem] = field(default_factory=list)
    error: Optional[PartialFailure] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class FetchSession:
    """
    HTTP session for a single fetch() call. Counts provider requests so the
    adapter can price them afterwards.
    """

    def __init__(self, client: httpx.AsyncClient):
        self.client = client
        self.calls = 0

    async def get(self, url: str, **kwargs) -> httpx.Response:
        self.calls += 1
        resp = await self.client.get(url, **kwargs)
        resp.raise_for_status()
        return resp


class SourceAdapter(ABC):
    """
    Base interface for all ingestion sources.
    """

    profile: SourceProfile

    def __init__(
        self,
        *,
        engagement_potential: Optional[float] = None,
        cost_per_call: Optional[float] = None,
        embedding_ttl_hours: Optional[int] = None,
        freshness_days: int = 14,
        timeout: float = 10.0,
        ledger: Optional["CostLedger"] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.engagement_potential = (
            self.profile.engagement_potential if engagement_potential is None else engagement_potential
        )
        self.cost_per_call = self.profile.cost_per_call if cost_per_call is None else cost_per_call
        self.embedding_ttl_hours = (
            self.profile.embedding_ttl_hours if embedding_ttl_hours is None else embedding_ttl_hours
        )
        self.freshness_days = freshness_days
        self.timeout = timeout
        self.ledger = ledger
        self.transport = transport

    @property
    def name(self) -> str:
        return self.profile.name

    async def fetch(
        self,
        affinity_hints: AbstractSet[str],
        *,
        user_id: Optional[str] = None,
    ) -> FetchResult:
        """
        Fetch and normalize items. Never raises: failures come back as a
        PartialFailure with zero items.
        """
        async with httpx.AsyncClient(
            timeout=self.timeout,
            transport=self.transport,
            headers=self.headers(),
        ) as client:
            session = FetchSession(client)
            try:
                items = await self.fetch_items(affinity_hints, session)
            except Exception as e:
                logger.warning(f"Source {self.name} failed: {type(e).__name__}: {e}")
                return FetchResult(
                    source=self.name,
                    error=PartialFailure(self.name, type(e).__name__, str(e)),
                )
            finally:
                # Requests already sent are billed even if parsing failed.
                await self._record_cost(session.calls, user_id)

        logger.info(f"Source {self.name}: fetched {len(items)} items")
        return FetchResult(source=self.name, items=items)

    @abstractmethod
    async def fetch_items(
        self,
        affinity_hints: AbstractSet[str],
        session: FetchSession,
    ) -> List[ContentItem]:
        """
        Fetch items published within the freshness window.
        May raise; fetch() converts errors into a PartialFailure.
        """
        raise NotImplementedError

    def headers(self) -> dict:
        return {}

    def cutoff(self, now: Optional[datetime] = None) -> datetime:
        now = now or datetime.now(timezone.utc)
        return now - timedelta(days=self.freshness_days)

    def make_item(
        self,
        *,
        title: str,
        summary: str,
        url: str,
        published_at: datetime,
        source_name: str,
        affinity_hints: AbstractSet[str],
    ) -> ContentItem:
        return ContentItem.create(
            title=title.strip(),
            summary=summary.strip(),
            source_url=url,
            source_name=source_name,
            source_adapter=self.name,
            published_at=published_at,
            content_type=self.profile.content_type,
            engagement_potential=self.engagement_potential,
            teams=mentioned_teams(f"{title} {summary}", affinity_hints),
        )

    async def _record_cost(self, calls: int, user_id: Optional[str]) -> None:
        if self.ledger is None or calls == 0:
            return
        await self.ledger.record(
            api=self.name,
            operation_type="api_call",
            tokens_or_units=calls,
            cost_estimate=self.cost_per_call * calls,
            user_id=user_id,
        )


def mentioned_teams(text: str, affinity_hints: AbstractSet[str]) -> frozenset[str]:
    lowered = text.lower()
    return frozenset(team for team in affinity_hints if team and team.lower() in lowered)


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp (with optional trailing Z) into UTC."""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)
