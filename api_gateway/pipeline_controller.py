"""
Pipeline controller.

Entry point for callers: validates and creates jobs, launches one
orchestrator task per job, and exposes status, listing, cancellation and
deletion. Callers never see pipeline exceptions; they observe outcomes
through the job record or the progress channel.
"""

import asyncio
from typing import Any, Dict, List, Optional, Union
from uuid import uuid4

from shared.errors import JobImmutableError, ValidationError
from shared.logging import get_logger
from shared.models.events import ErrorEvent
from shared.models.job import Job, JobConfig
from shared.validation import validate_job_config, validate_prompt
from modules.generators import build_backends
from modules.generators.interfaces import GenerationBackends
from modules.job_store import JobStore, create_job_store
from modules.progress_channel import ProgressChannel, create_progress_channel
from modules.stage_orchestrator import StageOrchestrator

logger = get_logger("pipeline_controller")


class PipelineController:
    """Owns the running job tasks of this process."""

    def __init__(
        self,
        store: Optional[JobStore] = None,
        channel: Optional[ProgressChannel] = None,
        backends: Optional[GenerationBackends] = None,
        orchestrator: Optional[StageOrchestrator] = None,
    ):
        self.store = store or create_job_store()
        self.channel = channel or create_progress_channel()
        self.orchestrator = orchestrator or StageOrchestrator(
            self.store, self.channel, backends or build_backends()
        )
        self._tasks: Dict[str, asyncio.Task] = {}
        self._cancel_events: Dict[str, asyncio.Event] = {}

    async def create(
        self,
        owner_id: str,
        prompt: str,
        config: Optional[Union[JobConfig, Dict[str, Any]]] = None,
    ) -> str:
        """
        Validate a request, store it as a queued job and start generating.

        Args:
            owner_id: Caller identity (authenticated upstream)
            prompt: Creative prompt
            config: JobConfig or dict of overrides

        Returns:
            Job ID

        Raises:
            ValidationError: If the prompt or config is invalid (nothing is stored)
        """
        if not owner_id or not owner_id.strip():
            raise ValidationError("owner_id is required")
        prompt = validate_prompt(prompt)
        job_config = validate_job_config(config)

        job = Job(id=str(uuid4()), owner_id=owner_id.strip(), prompt=prompt, config=job_config)
        job_id = await self.store.create(job)
        self._launch(job_id)

        logger.info(
            "Job created",
            extra={"job_id": job_id, "owner_id": job.owner_id, "duration": job_config.duration}
        )
        return job_id

    def _launch(self, job_id: str) -> None:
        cancel_event = asyncio.Event()
        task = asyncio.create_task(
            self.orchestrator.run(job_id, cancel_event), name=f"job-{job_id}"
        )
        self._tasks[job_id] = task
        self._cancel_events[job_id] = cancel_event
        task.add_done_callback(lambda finished: self._forget(job_id, finished))

    def _forget(self, job_id: str, task: asyncio.Task) -> None:
        if self._tasks.get(job_id) is task:
            del self._tasks[job_id]
            self._cancel_events.pop(job_id, None)
        if not task.cancelled() and task.exception() is not None:
            logger.error(
                "Job task crashed",
                exc_info=task.exception(),
                extra={"job_id": job_id}
            )

    def is_running(self, job_id: str) -> bool:
        task = self._tasks.get(job_id)
        return task is not None and not task.done()

    async def get(self, job_id: str) -> Job:
        """Current job record. Raises JobNotFoundError."""
        return await self.store.get(job_id)

    async def list_jobs(self, owner_id: str) -> List[Job]:
        """Jobs owned by `owner_id`, newest first."""
        return await self.store.list_by_owner(owner_id)

    async def cancel(self, job_id: str) -> Job:
        """
        Cancel a job. Cancelling a terminal job is a no-op.

        Returns:
            The job record after cancellation
        """
        job = await self.store.get(job_id)
        if job.is_terminal:
            return job

        cancel_event = self._cancel_events.get(job_id)
        if cancel_event is not None:
            cancel_event.set()
        task = self._tasks.get(job_id)
        if task is not None and not task.done():
            task.cancel()
            await asyncio.wait({task})

        job = await self.store.get(job_id)
        if job.is_terminal:
            return job

        # No task recorded the cancellation (never started, or owned by another process)
        message = "Job cancelled before it started"
        try:
            job = await self.store.update(job_id, {
                "status": "cancelled",
                "current_step": "Cancelled",
                "error_kind": "CancellationError",
                "error_message": message,
            })
        except JobImmutableError:
            return await self.store.get(job_id)
        await self.channel.publish(
            job_id,
            ErrorEvent(job_id=job_id, error=message, error_kind="CancellationError", status="cancelled")
        )
        logger.info("Job cancelled", extra={"job_id": job_id})
        return job

    async def delete(self, job_id: str) -> None:
        """Cancel if still running, then remove the job record."""
        if self.is_running(job_id):
            await self.cancel(job_id)
        await self.store.delete(job_id)
        logger.info("Job deleted", extra={"job_id": job_id})

    async def wait(self, job_id: str, timeout: Optional[float] = None) -> Job:
        """Wait for the job's task to finish (or `timeout`) and return the record."""
        task = self._tasks.get(job_id)
        if task is not None:
            await asyncio.wait({task}, timeout=timeout)
        return await self.store.get(job_id)

    async def shutdown(self) -> None:
        """Cancel all running jobs and close the progress channel."""
        tasks = [task for task in self._tasks.values() if not task.done()]
        for event in self._cancel_events.values():
            event.set()
        for task in tasks:
            task.cancel()
        if tasks:
            logger.info(f"Cancelling {len(tasks)} running jobs")
            await asyncio.gather(*tasks, return_exceptions=True)
        await self.channel.close()
