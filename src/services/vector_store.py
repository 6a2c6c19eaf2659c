"""
Vector store backends for EmbeddingRecords.

Two interchangeable implementations share one interface: a relational store
(SQLite with a registered similarity function) and a FAISS index.
"""
import json
import logging
import os
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple

import aiofiles
import faiss
import numpy as np

from core.entities import EmbeddingRecord
from services.config import VectorStoreConfig
from services.database import Database, from_db_timestamp, to_db_timestamp, utc_now

logger = logging.getLogger(__name__)


def _to_array(vector: List[float]) -> np.ndarray:
    return np.asarray(vector, dtype="float32")


def cosine_similarity(left: np.ndarray, right: np.ndarray) -> float:
    if left.shape != right.shape:
        return 0.0
    denom = float(np.linalg.norm(left) * np.linalg.norm(right))
    if denom == 0.0:
        return 0.0
    return float(np.dot(left, right) / denom)


def _sql_cosine(left: bytes, right: bytes) -> float:
    return cosine_similarity(np.frombuffer(left, dtype="float32"), np.frombuffer(right, dtype="float32"))


def _published_at(metadata: Dict[str, Any]) -> Optional[datetime]:
    return from_db_timestamp(metadata.get("published_at"))


class VectorStore(ABC):
    """
    Embedding persistence and similarity search.
    """

    @abstractmethod
    async def upsert(self, records: List[EmbeddingRecord]) -> int:
        """Insert or overwrite records keyed by content_hash. Returns count written."""
        raise NotImplementedError

    @abstractmethod
    async def query(
        self,
        vector: List[float],
        top_k: int,
        date_cutoff: datetime,
    ) -> List[EmbeddingRecord]:
        """Most similar live records published at or after date_cutoff."""
        raise NotImplementedError


class SqliteVectorStore(VectorStore):
    def __init__(
        self,
        database: Database,
        min_similarity: float = 0.5,
        sql_similarity: bool = True,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.db = database
        self.min_similarity = min_similarity
        self.sql_similarity = sql_similarity
        self.clock = clock

    async def upsert(self, records: List[EmbeddingRecord]) -> int:
        if not records:
            return 0

        await self.db.initialize()
        now = to_db_timestamp(self.clock())
        rows = [
            (
                record.content_hash,
                record.metadata.get("title", ""),
                record.metadata.get("summary", ""),
                record.metadata.get("source_url"),
                record.metadata.get("source_api"),
                record.metadata.get("content_type"),
                json.dumps(record.metadata.get("teams", [])),
                json.dumps(record.metadata, default=str),
                _to_array(record.embedding).tobytes(),
                record.metadata.get("published_at"),
                now,
                to_db_timestamp(record.expires_at),
            )
            for record in records
        ]
        async with self.db.connect() as conn:
            await conn.executemany(
                """
                INSERT OR REPLACE INTO content_embeddings
                (content_hash, title, summary, source_url, source_api, content_type,
                 teams, metadata, embedding, published_at, created_at, expires_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                rows,
            )
            await conn.commit()

        logger.info(f"Stored {len(rows)} embeddings")
        return len(rows)

    async def query(
        self,
        vector: List[float],
        top_k: int,
        date_cutoff: datetime,
    ) -> List[EmbeddingRecord]:
        """
        Date-filtered similarity search, falling back to an unfiltered search
        with in-process date filtering. Never raises.
        """
        try:
            records = await self._query_date_filtered(vector, top_k, date_cutoff)
            if records:
                logger.info(f"Retrieved {len(records)} relevant records")
                return records
            logger.info("Date-filtered similarity search returned nothing, trying fallback")
        except Exception as e:
            logger.warning(f"Date-filtered similarity search failed: {e}")

        try:
            records = await self._query_fallback(vector, top_k, date_cutoff)
        except Exception as e:
            logger.error(f"Fallback similarity search failed: {e}")
            return []

        logger.info(f"Retrieved {len(records)} relevant records via fallback")
        return records

    async def _query_date_filtered(
        self,
        vector: List[float],
        top_k: int,
        date_cutoff: datetime,
    ) -> List[EmbeddingRecord]:
        await self.db.initialize()
        async with self.db.connect() as conn:
            if self.sql_similarity:
                await conn.create_function("cosine_similarity", 2, _sql_cosine, deterministic=True)
            cursor = await conn.execute(
                """
                SELECT * FROM (
                    SELECT content_hash, metadata, embedding, expires_at,
                           cosine_similarity(embedding, ?) AS similarity
                    FROM content_embeddings
                    WHERE published_at >= ? AND expires_at > ?
                )
                WHERE similarity >= ?
                ORDER BY similarity DESC
                LIMIT ?
                """,
                (
                    _to_array(vector).tobytes(),
                    to_db_timestamp(date_cutoff),
                    to_db_timestamp(self.clock()),
                    self.min_similarity,
                    top_k,
                ),
            )
            rows = await cursor.fetchall()

        return [self._row_to_record(row, row["similarity"]) for row in rows]

    async def _query_fallback(
        self,
        vector: List[float],
        top_k: int,
        date_cutoff: datetime,
    ) -> List[EmbeddingRecord]:
        query_vec = _to_array(vector)
        rows = await self.db.fetchall(
            "SELECT content_hash, metadata, embedding, expires_at FROM content_embeddings WHERE expires_at > ?",
            (to_db_timestamp(self.clock()),),
        )

        scored: List[Tuple[float, Any]] = []
        for row in rows:
            similarity = cosine_similarity(query_vec, np.frombuffer(row["embedding"], dtype="float32"))
            if similarity >= self.min_similarity:
                scored.append((similarity, row))
        scored.sort(key=lambda pair: (-pair[0], pair[1]["content_hash"]))

        records = []
        for similarity, row in scored[: top_k * 2]:
            record = self._row_to_record(row, similarity)
            published = _published_at(record.metadata)
            if published is None or published < date_cutoff:
                continue
            records.append(record)

        return records[:top_k]

    @staticmethod
    def _row_to_record(row, similarity: float) -> EmbeddingRecord:
        return EmbeddingRecord(
            content_hash=row["content_hash"],
            embedding=np.frombuffer(row["embedding"], dtype="float32").tolist(),
            metadata=json.loads(row["metadata"] or "{}"),
            expires_at=from_db_timestamp(row["expires_at"]),
            similarity=float(similarity),
        )


class FaissVectorStore(VectorStore):
    """
    FAISS inner-product index over L2-normalized vectors, with record
    metadata kept in a JSON sidecar next to the index file.
    """

    def __init__(
        self,
        path: str,
        dim: int = 768,
        min_similarity: float = 0.5,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.path = path
        self.meta_path = f"{path}.meta.json"
        self.dim = dim
        self.min_similarity = min_similarity
        self.clock = clock

        if os.path.exists(path):
            self.index = faiss.read_index(path)
        else:
            self.index = faiss.IndexIDMap2(faiss.IndexFlatIP(dim))

        self.records: Dict[str, Dict[str, Any]] = {}
        if os.path.exists(self.meta_path):
            with open(self.meta_path, "r", encoding="utf-8") as f:
                self.records = json.load(f)

    @staticmethod
    def faiss_id(content_hash: str) -> int:
        # 60 bits of the hash fit in FAISS' signed int64 ids
        return int(content_hash[:15], 16)

    def _normalized(self, vectors: List[List[float]]) -> np.ndarray:
        vec = np.array(vectors).astype("float32")
        if vec.ndim != 2 or vec.shape[1] != self.dim:
            raise ValueError(f"Expected {self.dim}-dimensional vectors, got shape {vec.shape}")
        faiss.normalize_L2(vec)
        return vec

    async def upsert(self, records: List[EmbeddingRecord]) -> int:
        if not records:
            return 0

        # Last write wins for repeated hashes in one batch
        latest = {record.content_hash: record for record in records}
        ids = np.array([self.faiss_id(h) for h in latest], dtype="int64")
        vectors = self._normalized([record.embedding for record in latest.values()])

        self.index.remove_ids(ids)
        self.index.add_with_ids(vectors, ids)
        for faiss_id, record in zip(ids.tolist(), latest.values()):
            self.records[str(faiss_id)] = {
                "content_hash": record.content_hash,
                "metadata": record.metadata,
                "expires_at": to_db_timestamp(record.expires_at),
            }

        self._purge_expired()
        await self.persist()
        logger.info(f"FAISS: upserted {len(latest)} vectors (total {self.index.ntotal})")
        return len(latest)

    async def query(
        self,
        vector: List[float],
        top_k: int,
        date_cutoff: datetime,
    ) -> List[EmbeddingRecord]:
        if self.index.ntotal == 0:
            return []

        try:
            vec = self._normalized([vector])
        except ValueError as e:
            logger.error(f"FAISS query rejected: {e}")
            return []

        k = min(top_k * 4, self.index.ntotal)
        scores, indices = self.index.search(vec, k)
        now = self.clock()

        results: List[EmbeddingRecord] = []
        for faiss_id, score in zip(indices[0].tolist(), scores[0].tolist()):
            if faiss_id == -1 or score < self.min_similarity:
                continue
            entry = self.records.get(str(faiss_id))
            if entry is None:
                continue
            expires_at = from_db_timestamp(entry["expires_at"])
            published = _published_at(entry["metadata"])
            if expires_at <= now or published is None or published < date_cutoff:
                continue

            results.append(
                EmbeddingRecord(
                    content_hash=entry["content_hash"],
                    embedding=self.index.reconstruct(faiss_id).tolist(),
                    metadata=entry["metadata"],
                    expires_at=expires_at,
                    similarity=float(score),
                )
            )
            if len(results) >= top_k:
                break

        return results

    def _purge_expired(self) -> None:
        now = self.clock()
        expired = [
            faiss_id for faiss_id, entry in self.records.items()
            if from_db_timestamp(entry["expires_at"]) <= now
        ]
        if not expired:
            return
        self.index.remove_ids(np.array([int(i) for i in expired], dtype="int64"))
        for faiss_id in expired:
            del self.records[faiss_id]
        logger.debug(f"FAISS: purged {len(expired)} expired vectors")

    async def persist(self) -> None:
        directory = os.path.dirname(self.path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        faiss.write_index(self.index, self.path)
        async with aiofiles.open(self.meta_path, "w", encoding="utf-8") as f:
            await f.write(json.dumps(self.records, default=str))


def create_vector_store(config: VectorStoreConfig, database: Database) -> VectorStore:
    """Select the backend named in configuration."""
    if config.backend == "faiss":
        return FaissVectorStore(
            config.faiss_index_path,
            dim=config.dimension,
            min_similarity=config.min_similarity,
        )
    return SqliteVectorStore(database, min_similarity=config.min_similarity)
