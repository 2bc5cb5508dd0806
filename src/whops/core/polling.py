"""Poll loop for long-running warehouse jobs.

Model training runs asynchronously in the warehouse. The function here blocks
the calling worker until the job reaches a terminal state, keeping the
polling behavior explicit: a fixed interval, an optional maximum wait, and a
cancellation event shared with the driver.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable

from whops.core.errors import RemoteCallError, StepCancelledError, TrainingFailedError
from whops.core.remote import JobStatus, RemoteJob, WarehouseAdapter

logger = logging.getLogger(__name__)


def wait_for_job(
    adapter: WarehouseAdapter,
    job: RemoteJob,
    poll_interval: float = 5.0,
    *,
    max_wait: float | None = None,
    cancel_event: threading.Event | None = None,
    clock: Callable[[], float] = time.monotonic,
) -> JobStatus:
    """
    Block until a warehouse job reaches a terminal state.

    The job status is checked every `poll_interval` seconds. When
    `max_wait` elapses or `cancel_event` is set, the remote job is cancelled
    on a best-effort basis and the wait ends with `StepCancelledError`.

    Args:
        adapter: Warehouse adapter used to query and cancel the job.
        job: Handle of the submitted job.
        poll_interval: Time in seconds to wait between status checks.
        max_wait: Maximum total wait in seconds, or None for no limit.
        cancel_event: Event that requests cancellation when set.
        clock: Monotonic time source.

    Returns:
        JobStatus.SUCCEEDED.

    Raises:
        TrainingFailedError: If the job ends in the FAILED state.
        StepCancelledError: If the job was cancelled, locally or remotely.
        RemoteCallError: If a status check itself fails.
    """
    if poll_interval <= 0:
        raise ValueError("poll_interval must be > 0")

    cancel_event = cancel_event or threading.Event()
    deadline = clock() + max_wait if max_wait is not None else None

    while True:
        state = adapter.get_job_state(job.job_id)
        logger.debug("Job %s is %s", job.job_id, state.status.value)

        if state.status == JobStatus.SUCCEEDED:
            return state.status
        if state.status == JobStatus.FAILED:
            raise TrainingFailedError(
                state.error or f"Job {job.job_id} failed.", offending_sql=job.sql
            )
        if state.status == JobStatus.CANCELLED:
            raise StepCancelledError(None, f"job {job.job_id} was cancelled remotely")

        if deadline is not None and clock() >= deadline:
            _cancel_quietly(adapter, job)
            raise StepCancelledError(
                None, f"job {job.job_id} exceeded the maximum wait of {max_wait}s"
            )

        try:
            cancelled = cancel_event.wait(poll_interval)
        except KeyboardInterrupt:
            _cancel_quietly(adapter, job)
            raise StepCancelledError(None, f"job {job.job_id} interrupted") from None
        if cancelled:
            _cancel_quietly(adapter, job)
            raise StepCancelledError(None, f"job {job.job_id} cancelled on request")


def _cancel_quietly(adapter: WarehouseAdapter, job: RemoteJob) -> None:
    """Cancel a remote job, logging (not raising) if the warehouse refuses."""
    try:
        adapter.cancel_job(job.job_id)
    except RemoteCallError as exc:
        logger.warning("Could not cancel job %s: %s", job.job_id, exc.message)
    else:
        logger.info("Requested cancellation of job %s", job.job_id)
