"""
Credit metering.

Accumulates billable credits per job. Each successful backend invocation adds
a static per-operation cost; fallbacks add zero. Totals are read-only to
billing collaborators and are consulted by the motion engine policy.
"""

import asyncio
from typing import Dict, Optional

from shared.config import settings
from shared.errors import QuotaExceededError, ValidationError
from shared.logging import get_logger

logger = get_logger("cost_tracking")


class CreditMeter:
    """Per-job additive credit counter with an optional per-job ceiling."""

    def __init__(
        self,
        costs: Optional[Dict[str, int]] = None,
        max_credits_per_job: Optional[int] = None
    ):
        """
        Initialize credit meter.

        Args:
            costs: Credits per operation (defaults to settings.credit_costs)
            max_credits_per_job: Ceiling per job, None for unlimited
        """
        self.costs = dict(costs if costs is not None else settings.credit_costs)
        self.max_credits_per_job = (
            max_credits_per_job if max_credits_per_job is not None else settings.max_credits_per_job
        )
        self._totals: Dict[str, int] = {}
        self._breakdown: Dict[str, Dict[str, int]] = {}
        # Locks per job_id for concurrent-safe operations
        self._locks: Dict[str, asyncio.Lock] = {}

    def _get_lock(self, job_id: str) -> asyncio.Lock:
        """Get or create lock for a job_id."""
        lock = self._locks.get(job_id)
        if lock is None:
            lock = self._locks[job_id] = asyncio.Lock()
        return lock

    def cost_of(self, operation: str) -> int:
        """Static cost of one invocation of `operation`."""
        return self.costs.get(operation, 0)

    def start(self, job_id: str, initial: int = 0) -> None:
        """Begin metering a job, resuming from `initial` credits."""
        self._totals[job_id] = initial
        self._breakdown.setdefault(job_id, {})

    def release(self, job_id: str) -> None:
        """Forget a finished job. The total stays on the job record."""
        self._totals.pop(job_id, None)
        self._breakdown.pop(job_id, None)
        self._locks.pop(job_id, None)

    def get_total(self, job_id: str) -> int:
        """Credits charged to a job so far."""
        return self._totals.get(job_id, 0)

    def get_breakdown(self, job_id: str) -> Dict[str, int]:
        """Credits per operation for a job (copy)."""
        return dict(self._breakdown.get(job_id, {}))

    def would_exceed(self, job_id: str, operation: str) -> bool:
        """True if charging `operation` now would pass the job ceiling."""
        if self.max_credits_per_job is None:
            return False
        return self.get_total(job_id) + self.cost_of(operation) > self.max_credits_per_job

    def ensure_within_budget(self, job_id: str, operation: str) -> None:
        """
        Refuse an operation the job cannot afford.

        Raises:
            QuotaExceededError: If the call would exceed max_credits_per_job
        """
        if self.would_exceed(job_id, operation):
            error_msg = (
                f"Credit limit of {self.max_credits_per_job} exceeded for job {job_id}: "
                f"{self.get_total(job_id)} used, {operation} costs {self.cost_of(operation)}"
            )
            logger.error(
                error_msg,
                extra={
                    "job_id": job_id,
                    "operation": operation,
                    "credits_used": self.get_total(job_id),
                    "limit": self.max_credits_per_job,
                }
            )
            raise QuotaExceededError(error_msg, job_id=job_id, code="CREDIT_LIMIT")

    async def charge(self, job_id: str, operation: str, fallback: bool = False) -> int:
        """
        Record one backend invocation.

        Args:
            job_id: Job ID
            operation: Operation name (e.g., "image", "runway", "voice")
            fallback: True when the asset came from a fallback (charged 0)

        Returns:
            Running total for the job
        """
        cost = 0 if fallback else self.cost_of(operation)
        if cost < 0:
            raise ValidationError(f"Cost cannot be negative: {cost}", job_id=job_id)

        async with self._get_lock(job_id):
            total = self._totals.get(job_id, 0) + cost
            self._totals[job_id] = total
            breakdown = self._breakdown.setdefault(job_id, {})
            breakdown[operation] = breakdown.get(operation, 0) + cost

        logger.debug(
            f"Charged {cost} credits for {operation}",
            extra={"job_id": job_id, "operation": operation, "cost": cost, "total": total, "fallback": fallback}
        )
        return total


# Singleton instance
credit_meter = CreditMeter()
