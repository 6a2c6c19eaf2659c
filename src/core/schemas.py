"""
Pydantic schemas for inbound requests and structured LLM output.
"""
from typing import List, Optional
from pydantic import AliasChoices, BaseModel, Field, field_validator


class SimilarityScore(BaseModel):
    """
    Pydantic schema for one scored pair in a dedup batch
    """
    pair: int = Field(..., ge=1)
    score: float = Field(..., ge=0.0, le=1.0)
    reason: str = ""


class SimilarityBatch(BaseModel):
    """
    Pydantic schema for the similarity-scoring response
    """
    similarities: List[SimilarityScore] = []


class PersonalizedContentRequest(BaseModel):
    """
    Request for a personalized digest.
    """
    user_id: str = Field(..., min_length=1, validation_alias=AliasChoices("user_id", "userId"))
    max_articles: Optional[int] = Field(
        default=None, ge=1, le=20, validation_alias=AliasChoices("max_articles", "maxArticles")
    )
    force_refresh: bool = Field(
        default=False, validation_alias=AliasChoices("force_refresh", "forceRefresh")
    )

    @field_validator("user_id")
    @classmethod
    def _strip_user_id(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("user_id must not be blank")
        return value
