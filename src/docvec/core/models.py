"""
Data contracts for the docvec embedding subsystem.

This module defines the Pydantic models that cross component boundaries:

- DocumentText: Text fields of a document used to build embedding input
- EmbeddingVector: A stored vector plus the model tag that produced it
- EmbeddingMetrics: Running counters of the generation service
- RegenerationProgress: Immutable progress snapshot of one migration sweep
- ConsistencyStatus: Result of comparing stored model tags to the current model
- RankedResult / HybridResult: Ranking engine outputs
"""

import math
from datetime import datetime, timezone
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

RegenerationScope = Literal["outdated", "all"]

DEFAULT_FORMAT_VERSION = "1.0"


class DocumentText(BaseModel):
    """
    Text fields of a document that feed the embedding input.

    Every field is optional. The AI summary and key points only exist once
    the document has been analysed.
    """

    title: str | None = None
    description: str | None = None
    tags: list[str] | None = None
    summary: str | None = None
    key_points: list[str] | None = None

    def to_embedding_text(self) -> str:
        """Concatenate the present fields into one labelled embedding input."""
        parts: list[str] = []
        if self.title:
            parts.append(f"Title: {self.title}")
        if self.description:
            parts.append(f"Description: {self.description}")
        if self.tags:
            parts.append(f"Tags: {', '.join(self.tags)}")
        if self.summary:
            parts.append(f"Summary: {self.summary}")
        if self.key_points:
            parts.append(f"Key Points: {'; '.join(self.key_points)}")
        return "\n\n".join(parts)


class EmbeddingVector(BaseModel):
    """
    Numeric representation of a document's text as persisted by a store.

    Attributes:
        document_id: Document the vector belongs to
        values: Vector components (unit-normalized when produced by docvec)
        model_tag: Embedding model that produced the vector
        format_version: Storage format version
        updated_at: Last write time (UTC)
    """

    document_id: str
    values: list[float] = Field(..., min_length=1)
    model_tag: str
    format_version: str = DEFAULT_FORMAT_VERSION
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class ModelCount(BaseModel):
    """Number of stored vectors tagged with one model."""

    model_tag: str
    count: int = Field(..., ge=0)


class EmbeddingMetrics(BaseModel):
    """Running counters of the embedding generation service."""

    total_requests: int = Field(default=0, ge=0)
    successful_requests: int = Field(default=0, ge=0)
    failed_requests: int = Field(default=0, ge=0)
    average_latency_ms: float = Field(default=0.0, ge=0.0)
    cache_hits: int = Field(default=0, ge=0)


class RegenerationProgress(BaseModel):
    """
    State of one migration sweep.

    Instances are frozen. The controller replaces its snapshot once per
    finished batch, so readers never observe a half-applied batch.

    Attributes:
        total: Number of documents targeted by the sweep
        completed: Documents whose vector was regenerated and saved
        failed: Documents that raised during regeneration
        skipped: Documents with no embeddable text (neither completed nor failed)
        percentage: round(100 * (completed + failed) / total), 0 when total == 0
    """

    model_config = ConfigDict(frozen=True)

    total: int = Field(default=0, ge=0)
    completed: int = Field(default=0, ge=0)
    failed: int = Field(default=0, ge=0)
    skipped: int = Field(default=0, ge=0)
    percentage: int = Field(default=0, ge=0, le=100)

    @model_validator(mode="after")
    def _check_counts(self) -> "RegenerationProgress":
        if self.completed + self.failed + self.skipped > self.total:
            raise ValueError("completed + failed + skipped must not exceed total")
        return self

    @staticmethod
    def compute_percentage(total: int, completed: int, failed: int) -> int:
        if total == 0:
            return 0
        # Half-up rounding; round() would round 12.5 down to 12.
        return int(math.floor(100 * (completed + failed) / total + 0.5))

    def advance(self, completed: int = 0, failed: int = 0, skipped: int = 0) -> "RegenerationProgress":
        """Return a new snapshot with the given increments applied."""
        new_completed = self.completed + completed
        new_failed = self.failed + failed
        return RegenerationProgress(
            total=self.total,
            completed=new_completed,
            failed=new_failed,
            skipped=self.skipped + skipped,
            percentage=self.compute_percentage(self.total, new_completed, new_failed),
        )


class ProgressSnapshot(BaseModel):
    """Whether a sweep is running, plus the most recent progress."""

    running: bool
    progress: RegenerationProgress


class RegenerationStartResult(BaseModel):
    """Outcome of a request to start (or run) a regeneration sweep."""

    started: bool
    message: str
    progress: RegenerationProgress


class ConsistencyStatus(BaseModel):
    """Comparison of stored vector model tags against the configured model."""

    total_vectors: int = Field(..., ge=0)
    outdated_vectors: int = Field(..., ge=0)
    current_model: str
    models_found: list[str]
    migration_required: bool


class StartupOutcome(BaseModel):
    """
    Result of the startup consistency hook.

    The hook never raises; a failed check is reported through ``error``
    and the caller decides whether to look at it.
    """

    checked: bool
    migration_started: bool = False
    status: ConsistencyStatus | None = None
    error: str | None = None


class RankedResult(BaseModel):
    """One ranked candidate. Score is cosine similarity in [-1, 1]."""

    id: str
    score: float = Field(..., ge=-1.0, le=1.0)

    @field_validator("score", mode="before")
    @classmethod
    def _clip_rounding(cls, value: float) -> float:
        # Float error can push |cos| a hair above 1.0
        return max(-1.0, min(1.0, float(value)))


class HybridResult(BaseModel):
    """Combined vector and keyword score for one document."""

    id: str
    vector_score: float | None = None
    text_score: float | None = None
    combined_score: float
