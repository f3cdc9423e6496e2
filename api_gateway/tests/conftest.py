"""
Pytest fixtures for api_gateway tests.
"""
import asyncio

import pytest

from shared.errors import JobImmutableError
from shared.models.events import CompleteEvent, ErrorEvent
from modules.job_store.memory import InMemoryJobStore
from modules.progress_channel.memory import InProcessProgressChannel
from api_gateway.pipeline_controller import PipelineController


class FakeOrchestrator:
    """
    Stand-in for StageOrchestrator.

    "complete" finishes the job immediately; "block" holds it in generating
    until cancelled, recording the cancellation like the real orchestrator.
    """

    def __init__(self, store, channel, mode="complete"):
        self.store = store
        self.channel = channel
        self.mode = mode
        self.started = []

    async def run(self, job_id, cancel_event=None):
        self.started.append(job_id)
        job = await self.store.update(job_id, {"status": "generating", "stage": "script", "progress": 5})
        if self.mode == "complete":
            job = await self.store.update(job_id, {
                "status": "completed",
                "stage": "completed",
                "progress": 100,
                "final_artifact": f"/media/jobs/{job_id}/final.mp4",
            })
            await self.channel.publish(job_id, CompleteEvent(job_id=job_id, artifact_ref=job.final_artifact))
            return job
        try:
            await asyncio.Event().wait()
        except asyncio.CancelledError:
            try:
                await self.store.update(job_id, {
                    "status": "cancelled",
                    "error_kind": "CancellationError",
                    "error_message": "Job cancelled during script",
                })
            except JobImmutableError:
                pass
            await self.channel.publish(
                job_id, ErrorEvent(job_id=job_id, error="cancelled", status="cancelled")
            )
            raise
        return job


@pytest.fixture
def make_controller():
    """Factory for a controller over in-memory store/channel and a fake orchestrator."""
    def _make(mode="complete"):
        store = InMemoryJobStore()
        channel = InProcessProgressChannel()
        orchestrator = FakeOrchestrator(store, channel, mode=mode)
        return PipelineController(store=store, channel=channel, orchestrator=orchestrator)
    return _make
