"""
Ingestion job state machine.

Allowed moves:
    pending  -> running
    running  -> completed | failed | cancelled

Terminal states accept nothing. Every job status change in the service goes
through ``apply_transition`` so the table is enforced at each mutation site.
"""

from typing import Dict, FrozenSet, Optional, Any
from uuid import UUID
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession
import logging

from models.base import JobStatus, utcnow
from models.ingestion_job import IngestionJob
from core.exceptions import InvalidStatusTransitionError, JobNotFoundError

logger = logging.getLogger(__name__)

TRANSITIONS: Dict[JobStatus, FrozenSet[JobStatus]] = {
    JobStatus.PENDING: frozenset({JobStatus.RUNNING}),
    JobStatus.RUNNING: frozenset({JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED}),
    JobStatus.COMPLETED: frozenset(),
    JobStatus.FAILED: frozenset(),
    JobStatus.CANCELLED: frozenset(),
}

TERMINAL_STATES = frozenset(s for s, targets in TRANSITIONS.items() if not targets)


def can_transition(current: JobStatus, target: JobStatus) -> bool:
    return target in TRANSITIONS[JobStatus(current)]


def transition(current: JobStatus, target: JobStatus, job_id: Optional[UUID] = None) -> JobStatus:
    """
    Validate a status move against the transition table.

    Returns:
        The target status

    Raises:
        InvalidStatusTransitionError: If the move is not in the table
    """
    current = JobStatus(current)
    target = JobStatus(target)
    if not can_transition(current, target):
        raise InvalidStatusTransitionError(
            f"Cannot move job from {current.value} to {target.value}",
            context={
                "job_id": str(job_id) if job_id else None,
                "current_status": current.value,
                "target_status": target.value
            }
        )
    return target


def previous_states(target: JobStatus) -> FrozenSet[JobStatus]:
    """States from which ``target`` is reachable in one move."""
    return frozenset(s for s, targets in TRANSITIONS.items() if target in targets)


async def apply_transition(
    session: AsyncSession,
    job_id: UUID,
    target: JobStatus,
    expected: Optional[JobStatus] = None,
    **values: Any
) -> bool:
    """
    Move a job to ``target`` with a conditional UPDATE.

    The UPDATE only matches rows still in ``expected`` (or, when omitted, any
    state the table allows to reach ``target``), so a job moved concurrently
    to a terminal state is never overwritten. Extra column values (counts,
    timestamps, error_message) are written in the same statement. The caller
    commits.

    Args:
        session: Database session
        job_id: Job to move
        target: Requested status
        expected: Status the caller believes the job is in
        **values: Additional columns to set with the status

    Returns:
        True if the row was moved, False if it was no longer in a source state

    Raises:
        InvalidStatusTransitionError: If ``expected -> target`` is not allowed
    """
    if expected is not None:
        transition(expected, target, job_id)
        sources = frozenset({JobStatus(expected)})
    else:
        sources = previous_states(target)

    if target in TERMINAL_STATES and "completed_at" not in values:
        values["completed_at"] = utcnow()
    if target == JobStatus.RUNNING and "started_at" not in values:
        values["started_at"] = utcnow()

    result = await session.execute(
        update(IngestionJob)
        .where(IngestionJob.id == job_id, IngestionJob.status.in_(list(sources)))
        .values(status=target, **values)
        .execution_options(synchronize_session=False)
    )
    moved = result.rowcount == 1
    if not moved:
        logger.info(f"Job {job_id} not moved to {target.value}: no longer in {sorted(s.value for s in sources)}")
    return moved


async def get_status(session: AsyncSession, job_id: UUID) -> JobStatus:
    """Current persisted status of a job, bypassing the identity map."""
    job = await session.get(IngestionJob, job_id, populate_existing=True)
    if job is None:
        raise JobNotFoundError("Ingestion job not found", context={"job_id": str(job_id)})
    return JobStatus(job.status)
