"""
Run bookkeeping for leaderboard refreshes.
"""
from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from src.core.entities.snapshot import Snapshot


class ReconciliationStage(str, Enum):
    """Per-participant pipeline stages, in execution order."""
    FETCH_DEPOSITS = "fetch_deposits"
    PERSIST_DEPOSITS = "persist_deposits"
    COMPUTE_DEPOSIT_SUM = "compute_deposit_sum"
    FETCH_VALUATION = "fetch_valuation"
    COMPUTE_FLAGS = "compute_flags"
    WRITE_SNAPSHOT = "write_snapshot"
    UPSERT_LEADERBOARD = "upsert_leaderboard"
    DONE = "done"
    FAILED = "failed"


class ParticipantOutcome(BaseModel):
    participant_id: int
    stage: ReconciliationStage
    deposits_found: int = 0
    snapshot: Optional[Snapshot] = None
    failed_stage: Optional[ReconciliationStage] = None
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.stage == ReconciliationStage.DONE


class RunSummary(BaseModel):
    """
    Result of a single refresh run across all participants.
    """
    trigger: str = "manual"
    started_at: datetime
    finished_at: Optional[datetime] = None
    participants: int = 0
    batches: int = 0
    succeeded: list[int] = Field(default_factory=list)
    failed: list[int] = Field(default_factory=list)
    fallback_valuations: list[int] = Field(default_factory=list)
    cancelled: bool = False

    @property
    def duration_seconds(self) -> Optional[float]:
        if self.finished_at is None:
            return None
        return (self.finished_at - self.started_at).total_seconds()


class RefreshStatus(BaseModel):
    running: bool
    current_trigger: Optional[str] = None
    current_started_at: Optional[datetime] = None
    last_run: Optional[RunSummary] = None
    last_error: Optional[str] = None
