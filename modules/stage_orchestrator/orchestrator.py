"""
Stage orchestration.

Owns one job from `generating` to a terminal status: runs the stages in
order, fans each stage out over the job's scenes with bounded concurrency,
substitutes fallbacks for per-scene failures, and records the result of each
stage with a single store update followed by a progress event.
"""

import asyncio
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional

from shared.config import settings
from shared.cost_tracking import CreditMeter, credit_meter
from shared.errors import (
    CancellationError,
    CompositeError,
    GenerationError,
    JobImmutableError,
    JobNotFoundError,
    PipelineError,
    QuotaExceededError,
    TransientBackendError,
)
from shared.logging import bind_log_context, clear_log_context, get_logger, log_context, set_job_id
from shared.models.events import CompleteEvent, ErrorEvent, ProgressEvent
from shared.models.job import Job
from shared.models.scene import STAGE_ASSET_SLOTS, AssetRef, Scene
from shared.retry import retry_async
from modules.composer import ClipInput, CompositionSettings, compose
from modules.generators.fallbacks import identity_enhancement, placeholder_image, silence, still_hold
from modules.generators.interfaces import GenerationBackends
from modules.job_store.base import JobStore
from modules.progress_channel.base import ProgressChannel
from .artifacts import ArtifactUploader, create_artifact_uploader
from .motion_policy import MotionEnginePolicy
from .progress import STAGE_LABELS, ProgressTracker, active_stages, stage_bands

logger = get_logger("stage_orchestrator")

SceneWork = Callable[[Scene], Awaitable[AssetRef]]
SceneFallback = Callable[[Scene], Optional[AssetRef]]


@dataclass
class JobRun:
    """Mutable state of one orchestrator run."""

    job: Job
    tracker: ProgressTracker
    include_avatar: bool
    cancel_event: Optional[asyncio.Event] = None
    stage: str = "queued"
    output_path: Optional[Path] = None

    @property
    def job_id(self) -> str:
        return self.job.id


class StageOrchestrator:
    """Drives a job through script -> images -> enhance -> motion -> voice -> avatar -> composite -> upload."""

    def __init__(
        self,
        store: JobStore,
        channel: ProgressChannel,
        backends: GenerationBackends,
        meter: Optional[CreditMeter] = None,
        policy: Optional[MotionEnginePolicy] = None,
        uploader: Optional[ArtifactUploader] = None,
        compositor: Optional[Callable[..., Awaitable[Path]]] = None,
        concurrency: Optional[int] = None,
        call_timeout: Optional[float] = None,
        retry_attempts: Optional[int] = None,
        retry_base_delay: Optional[float] = None,
    ):
        self.store = store
        self.channel = channel
        self.backends = backends
        self.meter = meter or credit_meter
        self.policy = policy or MotionEnginePolicy()
        self.uploader = uploader or create_artifact_uploader()
        self.compositor = compositor or compose
        self.concurrency = concurrency or settings.stage_concurrency
        self.call_timeout = call_timeout or settings.backend_call_timeout
        self.retry_attempts = retry_attempts or settings.backend_retry_attempts
        self.retry_base_delay = (
            retry_base_delay if retry_base_delay is not None else settings.backend_retry_base_delay
        )
        self._stage_handlers: Dict[str, Callable[[JobRun], Awaitable[Dict[str, Any]]]] = {
            "script": self._run_script,
            "images": self._run_images,
            "enhance": self._run_enhance,
            "motion": self._run_motion,
            "voice": self._run_voice,
            "avatar": self._run_avatar,
            "composite": self._run_composite,
            "upload": self._run_upload,
        }

    def includes_avatar(self, job: Job) -> bool:
        """Avatar stage runs only when enabled, configured, and given a portrait."""
        return bool(
            job.config.enable_avatar
            and self.backends.avatar is not None
            and job.config.reference_images
        )

    async def run(self, job_id: str, cancel_event: Optional[asyncio.Event] = None) -> Job:
        """
        Execute the pipeline for a queued job.

        Per-scene failures degrade to fallbacks. Job-fatal errors (empty
        script, compositor failure, quota, cancellation) are recorded on the
        job and broadcast; they are not raised to the caller. Task
        cancellation is recorded and then re-raised.

        Returns:
            The job record as last written
        """
        set_job_id(job_id)
        job = await self.store.get(job_id)
        if job.is_terminal:
            logger.warning(f"Job already {job.status}, not running", extra={"job_id": job_id})
            clear_log_context()
            return job

        include_avatar = self.includes_avatar(job)
        run = JobRun(
            job=job,
            tracker=ProgressTracker(stage_bands(settings.stage_weights, include_avatar), start=job.progress),
            include_avatar=include_avatar,
            cancel_event=cancel_event,
        )
        self.meter.start(job_id, job.credits_used)
        start_time = time.monotonic()

        logger.info(
            "Pipeline started",
            extra={"job_id": job_id, "owner_id": job.owner_id, "include_avatar": include_avatar}
        )

        try:
            for stage in active_stages(include_avatar):
                self._check_cancelled(run, stage)
                await self._enter_stage(run, stage)
                partial = await self._stage_handlers[stage](run)
                await self._finish_stage(run, stage, partial)

            await self.channel.publish(
                job_id, CompleteEvent(job_id=job_id, artifact_ref=run.job.final_artifact)
            )
            logger.info(
                "Pipeline completed",
                extra={
                    "job_id": job_id,
                    "final_artifact": run.job.final_artifact,
                    "credits_used": run.job.credits_used,
                    "duration_seconds": round(time.monotonic() - start_time, 2),
                }
            )
        except asyncio.CancelledError:
            if run.job.status == "completed":
                # Stored as completed already; subscribers still need the terminal event
                await self.channel.publish(
                    job_id, CompleteEvent(job_id=job_id, artifact_ref=run.job.final_artifact)
                )
                raise
            await self._record_failure(
                run, "cancelled", CancellationError(f"Job cancelled during {run.stage}", job_id=job_id)
            )
            raise
        except CancellationError as e:
            await self._record_failure(run, "cancelled", e)
        except PipelineError as e:
            await self._record_failure(run, "failed", e)
        except Exception as e:
            logger.exception("Unexpected pipeline failure", extra={"job_id": job_id, "stage": run.stage})
            await self._record_failure(run, "failed", e)
        finally:
            self.meter.release(job_id)
            clear_log_context()

        return run.job

    # ------------------------------------------------------------------
    # Stage bookkeeping

    def _check_cancelled(self, run: JobRun, stage: str) -> None:
        if run.cancel_event is not None and run.cancel_event.is_set():
            raise CancellationError(f"Job cancelled before {stage}", job_id=run.job_id)

    async def _publish_progress(self, run: JobRun, step: str, message: str = "") -> None:
        await self.channel.publish(
            run.job_id,
            ProgressEvent(
                job_id=run.job_id,
                progress=run.tracker.current,
                step=step,
                message=message,
                stage=run.stage,
            )
        )

    async def _enter_stage(self, run: JobRun, stage: str) -> None:
        run.stage = stage
        bind_log_context(stage=stage)
        label = STAGE_LABELS[stage]
        partial: Dict[str, Any] = {
            "status": "generating",
            "stage": stage,
            "current_step": label,
            "progress": run.tracker.stage_start(stage),
        }
        if not run.include_avatar and run.job.config.enable_avatar and not run.job.avatar_skipped:
            partial["avatar_skipped"] = True
        run.job = await self.store.update(run.job_id, partial)
        await self._publish_progress(run, label, f"{label}...")

    async def _finish_stage(self, run: JobRun, stage: str, partial: Dict[str, Any]) -> None:
        label = STAGE_LABELS[stage]
        partial = dict(partial)
        partial["progress"] = run.tracker.stage_end(stage)
        partial["credits_used"] = self.meter.get_total(run.job_id)
        if partial.get("status") == "completed":
            run.stage = "completed"
            partial["stage"] = "completed"
            partial["current_step"] = "Completed"
        else:
            partial["current_step"] = f"{label} complete"
        run.job = await self.store.update(run.job_id, partial)
        await self._publish_progress(run, partial["current_step"])

    async def _record_failure(self, run: JobRun, status: str, error: Exception) -> None:
        if isinstance(error, PipelineError):
            kind, message = error.kind, error.message
        else:
            kind, message = type(error).__name__, str(error) or type(error).__name__

        if status == "cancelled":
            step = f"Cancelled during {STAGE_LABELS.get(run.stage, run.stage)}"
            logger.info(step, extra={"job_id": run.job_id, "stage": run.stage})
        else:
            step = f"Failed during {STAGE_LABELS.get(run.stage, run.stage)}: {message}"
            logger.error(
                "Pipeline failed",
                extra={"job_id": run.job_id, "stage": run.stage, "error_kind": kind, "error": message}
            )

        partial = {
            "status": status,
            "current_step": step,
            "error_kind": kind,
            "error_message": message,
            "credits_used": self.meter.get_total(run.job_id),
        }
        try:
            run.job = await self.store.update(run.job_id, partial)
        except (JobNotFoundError, JobImmutableError) as e:
            logger.warning(
                "Could not record job failure",
                extra={"job_id": run.job_id, "error": str(e)}
            )
        await self.channel.publish(
            run.job_id,
            ErrorEvent(job_id=run.job_id, error=message, error_kind=kind, status=status)
        )

    # ------------------------------------------------------------------
    # Backend calls and fan-out

    async def _call(self, job_id: str, operation: str, func: Callable[..., Awaitable[Any]], *args: Any) -> Any:
        """
        One metered backend invocation with timeout and retry.

        Raises:
            QuotaExceededError: If the job cannot afford the call
        """
        self.meter.ensure_within_budget(job_id, operation)

        async def attempt() -> Any:
            try:
                return await asyncio.wait_for(func(*args), timeout=self.call_timeout)
            except asyncio.TimeoutError as e:
                raise TransientBackendError(
                    f"{operation} call timed out after {self.call_timeout}s", job_id=job_id
                ) from e

        result = await retry_async(
            attempt,
            max_attempts=self.retry_attempts,
            base_delay=self.retry_base_delay,
            label=operation,
        )
        await self.meter.charge(job_id, operation)
        return result

    async def _resolve_scenes(
        self,
        run: JobRun,
        stage: str,
        work: Optional[SceneWork],
        fallback: SceneFallback,
    ) -> List[Scene]:
        """
        Fill `stage`'s asset slot on every scene that lacks one.

        `work` failures (other than quota and cancellation) become
        `fallback(scene)`. With no `work`, every scene takes the fallback
        without a call.
        """
        slot = STAGE_ASSET_SLOTS[stage]
        scenes = run.job.scenes
        pending = [scene for scene in scenes if getattr(scene, slot) is None]
        semaphore = asyncio.Semaphore(self.concurrency)

        async def resolve(scene: Scene) -> Optional[AssetRef]:
            if work is None:
                return fallback(scene)
            async with semaphore:
                with log_context(scene_id=scene.id):
                    try:
                        return await work(scene)
                    except QuotaExceededError:
                        raise
                    except Exception as e:
                        logger.warning(
                            f"{stage} failed for scene {scene.id}, using fallback",
                            extra={
                                "job_id": run.job_id,
                                "stage": stage,
                                "scene_id": scene.id,
                                "error_kind": type(e).__name__,
                                "error": str(e),
                            }
                        )
                        return fallback(scene)

        results = await asyncio.gather(*(resolve(scene) for scene in pending), return_exceptions=True)
        for result in results:
            if isinstance(result, BaseException):
                raise result

        updated = {
            scene.id: scene.model_copy(update={slot: asset})
            for scene, asset in zip(pending, results)
        }
        fallback_count = sum(1 for asset in results if asset is not None and asset.is_fallback)
        logger.info(
            f"{stage} resolved {len(pending)} scenes ({fallback_count} fallbacks)",
            extra={"job_id": run.job_id, "stage": stage, "fallbacks": fallback_count}
        )
        return [updated.get(scene.id, scene) for scene in scenes]

    # ------------------------------------------------------------------
    # Stages

    async def _run_script(self, run: JobRun) -> Dict[str, Any]:
        job = run.job
        if job.scenes:
            return {}

        script = await self._call(
            job.id,
            "script",
            self.backends.script.generate,
            job.prompt,
            job.config.duration,
            job.config.visual_style,
            job.config.tone,
        )
        if not script.scenes:
            raise GenerationError("Script writer returned no scenes", job_id=job.id, code="EMPTY_SCRIPT")

        scenes = [
            Scene(
                id=item.id,
                order_index=index,
                duration=item.duration,
                narration_text=item.narration,
                visual_description=item.description,
                emotion_tag=item.emotion,
            )
            for index, item in enumerate(script.scenes)
        ]
        return {"title": script.title, "scenes": scenes}

    async def _run_images(self, run: JobRun) -> Dict[str, Any]:
        backend = self.backends.image
        style = run.job.config.visual_style
        work = None
        if backend is not None:
            async def work(scene: Scene) -> AssetRef:
                uri = await self._call(run.job_id, "image", backend.generate, scene.visual_description, style)
                return AssetRef(uri=uri, source=backend.name)

        scenes = await self._resolve_scenes(run, "images", work, lambda scene: placeholder_image())
        return {"scenes": scenes}

    async def _run_enhance(self, run: JobRun) -> Dict[str, Any]:
        backend = self.backends.enhancer
        work = None
        if backend is not None:
            async def work(scene: Scene) -> AssetRef:
                if scene.image.is_fallback:
                    return identity_enhancement(scene.image)
                uri = await self._call(run.job_id, "enhance", backend.enhance, scene.image.uri)
                return AssetRef(uri=uri, source=backend.name)

        scenes = await self._resolve_scenes(
            run, "enhance", work, lambda scene: identity_enhancement(scene.image)
        )
        return {"scenes": scenes}

    async def _run_motion(self, run: JobRun) -> Dict[str, Any]:
        job = run.job
        animatable = [
            scene for scene in job.scenes
            if scene.motion_clip is None and scene.image is not None and not scene.image.is_fallback
        ]
        engines = self.policy.assign(
            job.config.motion_engine,
            len(animatable),
            self.meter.get_total(job.id),
            available=list(self.backends.motion),
            cost_of=self.meter.cost_of,
        )
        engine_for = {scene.id: engine for scene, engine in zip(animatable, engines)}

        def hold(scene: Scene) -> AssetRef:
            return still_hold(scene.best_image, scene.duration)

        async def work(scene: Scene) -> AssetRef:
            engine = engine_for.get(scene.id)
            if engine is None:
                return hold(scene)
            synthesizer = self.backends.motion[engine]
            uri = await self._call(
                job.id, engine, synthesizer.animate,
                scene.best_image.uri, scene.visual_description, job.config.aspect_ratio,
            )
            return AssetRef(uri=uri, source=engine)

        scenes = await self._resolve_scenes(run, "motion", work, hold)
        scenes = [
            scene.model_copy(update={"motion_engine": scene.motion_clip.source})
            if scene.motion_clip is not None and not scene.motion_clip.is_fallback
            else scene
            for scene in scenes
        ]
        return {"scenes": scenes}

    async def _run_voice(self, run: JobRun) -> Dict[str, Any]:
        backend = self.backends.voice
        profile = run.job.config.voice_profile

        def mute(scene: Scene) -> AssetRef:
            return silence(scene.duration)

        async def work(scene: Scene) -> AssetRef:
            if backend is None or not scene.narration_text.strip():
                return mute(scene)
            uri = await self._call(run.job_id, "voice", backend.synthesize, scene.narration_text, profile)
            return AssetRef(uri=uri, source=backend.name)

        scenes = await self._resolve_scenes(run, "voice", work, mute)
        return {"scenes": scenes}

    async def _run_avatar(self, run: JobRun) -> Dict[str, Any]:
        job = run.job
        backend = self.backends.avatar
        portrait = job.config.reference_images[0]

        if any(scene.audio is None or scene.audio.is_fallback for scene in job.scenes):
            logger.warning(
                "Skipping avatar stage: some scenes have no narration audio",
                extra={"job_id": job.id}
            )
            return {"avatar_skipped": True}

        failed: List[str] = []

        def skip(scene: Scene) -> None:
            failed.append(scene.id)
            return None

        async def work(scene: Scene) -> AssetRef:
            uri = await self._call(job.id, "avatar", backend.animate, scene.audio.uri, portrait)
            return AssetRef(uri=uri, source=backend.name)

        scenes = await self._resolve_scenes(run, "avatar", work, skip)
        if failed:
            logger.warning(
                f"Skipping avatar stage: {len(failed)} scenes failed",
                extra={"job_id": job.id, "failed_scenes": failed}
            )
            return {"avatar_skipped": True}
        return {"scenes": scenes}

    async def _run_composite(self, run: JobRun) -> Dict[str, Any]:
        job = run.job
        label = STAGE_LABELS["composite"]
        clips = [
            ClipInput(
                motion=scene.motion_clip,
                audio=scene.audio,
                duration=scene.duration,
                avatar=scene.avatar_clip if run.include_avatar else None,
            )
            for scene in sorted(job.scenes, key=lambda s: s.order_index)
        ]
        composition = CompositionSettings.from_job_config(job.config, job.title)
        work_dir = Path(settings.media_dir) / "jobs" / job.id

        async def on_progress(fraction: float) -> None:
            before = run.tracker.current
            if run.tracker.within("composite", fraction) > before:
                await self._publish_progress(run, label, f"Rendering {int(fraction * 100)}%")

        try:
            run.output_path = await self.compositor(
                clips, composition, work_dir, job_id=job.id, on_progress=on_progress
            )
        except OSError as e:
            raise CompositeError(f"Compositor failed: {e}", job_id=job.id, work_dir=str(work_dir)) from e
        return {}

    async def _run_upload(self, run: JobRun) -> Dict[str, Any]:
        job = run.job
        try:
            artifact = await self.uploader.upload(run.output_path, job.id, job.owner_id)
        except Exception as e:
            logger.warning(
                "Artifact upload failed, keeping local file",
                extra={"job_id": job.id, "error": str(e), "output_path": str(run.output_path)}
            )
            artifact = str(run.output_path)
        return {"final_artifact": artifact, "status": "completed"}
