"""
Tests for StageOrchestrator with fake backends, an in-memory store and a
recording channel.
"""

import asyncio
from pathlib import Path
from typing import List

import pytest

from shared.cost_tracking import CreditMeter
from shared.errors import CompositeError, GenerationError, QuotaExceededError, TransientBackendError
from shared.models.events import CompleteEvent, ErrorEvent, ProgressEvent
from shared.models.job import Job, JobConfig
from shared.models.scene import Script, ScriptScene
from modules.generators.interfaces import (
    AvatarSynthesizer,
    GenerationBackends,
    ImageEnhancer,
    ImageGenerator,
    MotionSynthesizer,
    ScriptGenerator,
    VoiceSynthesizer,
)
from modules.job_store.memory import InMemoryJobStore
from modules.progress_channel.base import ProgressChannel
from modules.stage_orchestrator import LocalArtifactUploader, MotionEnginePolicy, StageOrchestrator

COSTS = {"script": 1, "image": 2, "enhance": 1, "runway": 15, "animatediff": 5, "voice": 1, "avatar": 10}


class RecordingChannel(ProgressChannel):
    def __init__(self):
        self.events = []

    async def publish(self, job_id, event):
        self.events.append(event)

    def subscribe(self, job_id):
        raise NotImplementedError

    def progress_values(self) -> List[int]:
        return [event.progress for event in self.events if isinstance(event, ProgressEvent)]

    def steps(self) -> List[str]:
        return [event.step for event in self.events if isinstance(event, ProgressEvent)]


class FakeScriptWriter(ScriptGenerator):
    def __init__(self, scene_count=2):
        self.scene_count = scene_count
        self.calls = 0

    async def generate(self, prompt, duration, style, tone):
        self.calls += 1
        scenes = [
            ScriptScene(
                id=f"scene_{i + 1}",
                narration=f"Narration {i + 1}.",
                description=f"description {i + 1}",
                duration=duration / max(1, self.scene_count),
            )
            for i in range(self.scene_count)
        ]
        return Script(title="Harbor Lights", scenes=scenes)


class FakeImageGenerator(ImageGenerator):
    def __init__(self, fail_on=(), transient_failures=0, on_call=None):
        self.fail_on = set(fail_on)
        self.transient_failures = transient_failures
        self.on_call = on_call
        self.calls = 0

    async def generate(self, scene_text, style):
        self.calls += 1
        if self.on_call is not None:
            await self.on_call()
        if self.transient_failures > 0:
            self.transient_failures -= 1
            raise TransientBackendError("sdxl timed out")
        if scene_text in self.fail_on:
            raise GenerationError("NSFW content detected")
        return f"https://img.example/{scene_text.replace(' ', '_')}.png"


class FakeEnhancer(ImageEnhancer):
    def __init__(self):
        self.calls = []

    async def enhance(self, image_uri):
        self.calls.append(image_uri)
        return image_uri.replace(".png", "_2x.png")


class FakeMotion(MotionSynthesizer):
    def __init__(self, engine):
        self.engine = engine
        self.calls = 0
        self.ratios = []

    async def animate(self, image_uri, scene_text, aspect_ratio="16:9"):
        self.calls += 1
        self.ratios.append(aspect_ratio)
        return f"https://{self.engine}.example/{self.calls}.mp4"


class FakeVoice(VoiceSynthesizer):
    async def synthesize(self, text, voice_profile):
        return f"/media/voice/{abs(hash(text))}.mp3"


class FakeAvatar(AvatarSynthesizer):
    def __init__(self, fail=False):
        self.fail = fail
        self.calls = []

    async def animate(self, audio_uri, image_uri):
        self.calls.append((audio_uri, image_uri))
        if self.fail:
            raise GenerationError("face not detected")
        return f"https://hedra.example/{len(self.calls)}.mp4"


class FakeCompositor:
    def __init__(self, error=None):
        self.error = error
        self.calls = []

    async def __call__(self, clips, composition, work_dir, job_id=None, on_progress=None):
        self.calls.append({"clips": clips, "composition": composition, "work_dir": Path(work_dir)})
        if self.error is not None:
            raise self.error
        if on_progress is not None:
            await on_progress(0.5)
            await on_progress(1.0)
        work_dir = Path(work_dir)
        work_dir.mkdir(parents=True, exist_ok=True)
        output = work_dir / "final.mp4"
        output.write_bytes(b"\x00\x00\x00\x18ftypmp42")
        return output


def make_backends(**overrides) -> GenerationBackends:
    fields = {
        "script": FakeScriptWriter(),
        "image": FakeImageGenerator(),
        "enhancer": FakeEnhancer(),
        "motion": {"runway": FakeMotion("runway"), "animatediff": FakeMotion("animatediff")},
        "voice": FakeVoice(),
        "avatar": None,
    }
    fields.update(overrides)
    return GenerationBackends(**fields)


def make_orchestrator(store, channel, backends, compositor=None, meter=None, **kwargs) -> StageOrchestrator:
    return StageOrchestrator(
        store,
        channel,
        backends,
        meter=meter or CreditMeter(costs=COSTS),
        policy=MotionEnginePolicy(credit_threshold=50, premium_engine="runway", economy_engine="animatediff"),
        uploader=LocalArtifactUploader(),
        compositor=compositor or FakeCompositor(),
        concurrency=2,
        call_timeout=5,
        retry_attempts=3,
        retry_base_delay=0,
        **kwargs
    )


async def queue_job(store, job_id="job-1", **config) -> Job:
    job = Job(id=job_id, owner_id="user-1", prompt="a harbor at night", config=JobConfig(duration=12, **config))
    await store.create(job)
    return job


@pytest.mark.asyncio
async def test_successful_run_completes_with_artifact():
    store, channel = InMemoryJobStore(), RecordingChannel()
    await queue_job(store)

    job = await make_orchestrator(store, channel, make_backends()).run("job-1")

    assert job.status == "completed"
    assert job.progress == 100
    assert job.stage == "completed"
    assert job.current_step == "Completed"
    assert job.final_artifact.endswith(".mp4")
    assert Path(job.final_artifact).exists()
    assert job.title == "Harbor Lights"
    assert [scene.order_index for scene in job.scenes] == [0, 1]
    for scene in job.scenes:
        assert not scene.image.is_fallback
        assert scene.enhanced_image.uri.endswith("_2x.png")
        assert not scene.motion_clip.is_fallback
        assert not scene.audio.is_fallback
        assert scene.avatar_clip is None
    assert job.credits_used == 1 + 2 * 2 + 2 * 1 + 2 * 15 + 2 * 1
    assert isinstance(channel.events[-1], CompleteEvent)
    assert channel.events[-1].artifact_ref == job.final_artifact
    assert (await store.get("job-1")).status == "completed"


@pytest.mark.asyncio
async def test_progress_never_goes_backwards():
    store, channel = InMemoryJobStore(), RecordingChannel()
    await queue_job(store)

    await make_orchestrator(store, channel, make_backends()).run("job-1")

    values = channel.progress_values()
    assert values == sorted(values)
    assert values[0] == 0
    assert values[-1] == 100
    assert "Writing script" in channel.steps()
    assert "Creating talking avatar" not in channel.steps()
    assert any(event.message.startswith("Rendering") for event in channel.events if isinstance(event, ProgressEvent))


@pytest.mark.asyncio
async def test_image_failure_degrades_to_fallbacks():
    store, channel = InMemoryJobStore(), RecordingChannel()
    await queue_job(store)
    backends = make_backends(image=FakeImageGenerator(fail_on={"description 2"}))

    job = await make_orchestrator(store, channel, backends).run("job-1")

    assert job.status == "completed"
    good, bad = job.scenes
    assert not good.image.is_fallback
    assert bad.image.is_fallback
    assert bad.enhanced_image.is_fallback
    assert bad.motion_clip.is_fallback
    assert bad.motion_clip.uri.startswith("fallback:still")
    assert bad.motion_engine is None
    assert good.motion_engine == "runway"
    # Fallback image is neither enhanced nor animated, so it costs nothing downstream
    assert backends.enhancer.calls == [good.image.uri]
    assert job.credits_used == 1 + 2 + 1 + 15 + 2


@pytest.mark.asyncio
async def test_three_scene_auto_motion_job():
    store, channel = InMemoryJobStore(), RecordingChannel()
    await queue_job(store, motion_engine="auto")

    job = await make_orchestrator(store, channel, make_backends(script=FakeScriptWriter(3))).run("job-1")

    assert job.status == "completed"
    assert len(job.scenes) == 3
    assert Path(job.final_artifact).suffix == ".mp4"
    assert job.credits_used > 0
    assert job.credits_used == 1 + 3 * 2 + 3 * 1 + 3 * 15 + 3 * 1
    assert all(scene.motion_engine == "runway" for scene in job.scenes)


@pytest.mark.asyncio
async def test_every_image_failing_still_completes():
    store, channel = InMemoryJobStore(), RecordingChannel()
    await queue_job(store)
    failing = {"description 1", "description 2", "description 3"}
    backends = make_backends(script=FakeScriptWriter(3), image=FakeImageGenerator(fail_on=failing))

    job = await make_orchestrator(store, channel, backends).run("job-1")

    assert job.status == "completed"
    assert len(job.scenes) == 3
    for scene in job.scenes:
        assert scene.image.is_fallback
        assert scene.motion_clip.uri.startswith("fallback:still")
        assert not scene.audio.is_fallback
    assert backends.enhancer.calls == []
    assert backends.motion["runway"].calls == 0
    assert job.credits_used == 1 + 3
    assert isinstance(channel.events[-1], CompleteEvent)


@pytest.mark.asyncio
async def test_scene_calls_are_bounded_by_concurrency():
    store, channel = InMemoryJobStore(), RecordingChannel()
    await queue_job(store)
    in_flight = 0
    peak = 0

    async def track():
        nonlocal in_flight, peak
        in_flight += 1
        peak = max(peak, in_flight)
        await asyncio.sleep(0.01)
        in_flight -= 1

    image = FakeImageGenerator(on_call=track)
    backends = make_backends(script=FakeScriptWriter(6), image=image)

    job = await make_orchestrator(store, channel, backends).run("job-1")

    assert job.status == "completed"
    assert image.calls == 6
    assert peak == 2


@pytest.mark.asyncio
async def test_transient_errors_are_retried():
    store, channel = InMemoryJobStore(), RecordingChannel()
    await queue_job(store)
    image = FakeImageGenerator(transient_failures=1)

    job = await make_orchestrator(store, channel, make_backends(image=image)).run("job-1")

    assert job.status == "completed"
    assert all(not scene.image.is_fallback for scene in job.scenes)
    assert image.calls == 3


@pytest.mark.asyncio
async def test_compositor_failure_fails_job_and_keeps_scenes():
    store, channel = InMemoryJobStore(), RecordingChannel()
    await queue_job(store)
    compositor = FakeCompositor(error=CompositeError("FFmpeg exited with code 1", returncode=1))

    job = await make_orchestrator(store, channel, make_backends(), compositor=compositor).run("job-1")

    assert job.status == "failed"
    assert job.error_kind == "CompositeError"
    assert job.final_artifact is None
    assert job.current_step.startswith("Failed during Compositing video")
    assert len(job.scenes) == 2
    assert all(scene.audio is not None for scene in job.scenes)
    last = channel.events[-1]
    assert isinstance(last, ErrorEvent)
    assert last.status == "failed"
    assert last.error_kind == "CompositeError"


@pytest.mark.asyncio
async def test_compositor_receives_ordered_clips():
    store, channel = InMemoryJobStore(), RecordingChannel()
    await queue_job(store, transition="none", aspect_ratio="1:1")
    compositor = FakeCompositor()

    await make_orchestrator(store, channel, make_backends(script=FakeScriptWriter(3)), compositor=compositor).run("job-1")

    call = compositor.calls[0]
    assert len(call["clips"]) == 3
    assert sum(clip.duration for clip in call["clips"]) == pytest.approx(12)
    assert call["composition"].transition == "none"
    assert (call["composition"].width, call["composition"].height) == (1080, 1080)
    assert call["work_dir"].name == "job-1"


@pytest.mark.asyncio
async def test_motion_engine_receives_job_aspect_ratio():
    store, channel = InMemoryJobStore(), RecordingChannel()
    await queue_job(store, aspect_ratio="9:16")
    backends = make_backends()

    await make_orchestrator(store, channel, backends).run("job-1")

    assert backends.motion["runway"].ratios == ["9:16", "9:16"]


@pytest.mark.asyncio
async def test_empty_script_is_fatal():
    store, channel = InMemoryJobStore(), RecordingChannel()
    await queue_job(store)
    compositor = FakeCompositor()

    job = await make_orchestrator(
        store, channel, make_backends(script=FakeScriptWriter(0)), compositor=compositor
    ).run("job-1")

    assert job.status == "failed"
    assert job.error_kind == "GenerationError"
    assert "no scenes" in job.error_message
    assert compositor.calls == []


@pytest.mark.asyncio
async def test_quota_error_is_fatal():
    store, channel = InMemoryJobStore(), RecordingChannel()
    await queue_job(store)

    class BrokeImages(ImageGenerator):
        async def generate(self, scene_text, style):
            raise QuotaExceededError("replicate payment required")

    job = await make_orchestrator(store, channel, make_backends(image=BrokeImages())).run("job-1")

    assert job.status == "failed"
    assert job.error_kind == "QuotaExceededError"
    assert job.stage == "images"


@pytest.mark.asyncio
async def test_credit_ceiling_stops_the_job():
    store, channel = InMemoryJobStore(), RecordingChannel()
    await queue_job(store)
    meter = CreditMeter(costs=COSTS, max_credits_per_job=10)

    job = await make_orchestrator(store, channel, make_backends(), meter=meter).run("job-1")

    assert job.status == "failed"
    assert job.error_kind == "QuotaExceededError"
    assert job.credits_used <= 10 + 15 * 2


@pytest.mark.asyncio
async def test_missing_optional_backends_use_fallbacks_without_calls():
    store, channel = InMemoryJobStore(), RecordingChannel()
    await queue_job(store)
    backends = make_backends(image=None, enhancer=None, motion={}, voice=None)

    job = await make_orchestrator(store, channel, backends).run("job-1")

    assert job.status == "completed"
    assert job.credits_used == 1
    for scene in job.scenes:
        assert scene.image.is_fallback
        assert scene.motion_clip.is_fallback
        assert scene.audio.uri.startswith("fallback:silence")


@pytest.mark.asyncio
async def test_motion_policy_switches_to_economy_engine():
    store, channel = InMemoryJobStore(), RecordingChannel()
    await queue_job(store)
    backends = make_backends(script=FakeScriptWriter(4))

    job = await make_orchestrator(store, channel, backends).run("job-1")

    # 13 credits before motion; runway at 13, 28 and 43, economy once 58 is projected
    assert [scene.motion_engine for scene in job.scenes] == ["runway", "runway", "runway", "animatediff"]


@pytest.mark.asyncio
async def test_explicit_engine_degrades_when_unavailable():
    store, channel = InMemoryJobStore(), RecordingChannel()
    await queue_job(store, motion_engine="runway")
    backends = make_backends(motion={"animatediff": FakeMotion("animatediff")})

    job = await make_orchestrator(store, channel, backends).run("job-1")

    assert {scene.motion_engine for scene in job.scenes} == {"animatediff"}


@pytest.mark.asyncio
async def test_cancel_event_stops_before_next_stage():
    store, channel = InMemoryJobStore(), RecordingChannel()
    await queue_job(store)
    cancel_event = asyncio.Event()

    async def cancel_mid_stage():
        cancel_event.set()

    compositor = FakeCompositor()
    backends = make_backends(image=FakeImageGenerator(on_call=cancel_mid_stage))

    job = await make_orchestrator(store, channel, backends, compositor=compositor).run("job-1", cancel_event)

    assert job.status == "cancelled"
    assert job.error_kind == "CancellationError"
    assert job.stage == "images"
    assert job.current_step == "Cancelled during Generating scene images"
    assert compositor.calls == []
    assert isinstance(channel.events[-1], ErrorEvent)
    assert channel.events[-1].status == "cancelled"


@pytest.mark.asyncio
async def test_task_cancellation_is_recorded_and_reraised():
    store, channel = InMemoryJobStore(), RecordingChannel()
    await queue_job(store)
    started = asyncio.Event()

    async def block():
        started.set()
        await asyncio.Event().wait()

    orchestrator = make_orchestrator(store, channel, make_backends(image=FakeImageGenerator(on_call=block)))
    task = asyncio.create_task(orchestrator.run("job-1"))
    await asyncio.wait_for(started.wait(), timeout=2)
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task

    job = await store.get("job-1")
    assert job.status == "cancelled"
    assert job.final_artifact is None


@pytest.mark.asyncio
async def test_cancellation_after_completion_keeps_completed_state():
    store = InMemoryJobStore()
    await queue_job(store)

    class CancelOnComplete(RecordingChannel):
        async def publish(self, job_id, event):
            if isinstance(event, CompleteEvent) and not any(isinstance(e, CompleteEvent) for e in self.events):
                self.events.append(event)
                raise asyncio.CancelledError()
            await super().publish(job_id, event)

    channel = CancelOnComplete()

    with pytest.raises(asyncio.CancelledError):
        await make_orchestrator(store, channel, make_backends()).run("job-1")

    job = await store.get("job-1")
    assert job.status == "completed"
    assert job.error_kind is None
    assert not any(isinstance(event, ErrorEvent) for event in channel.events)
    assert isinstance(channel.events[-1], CompleteEvent)


@pytest.mark.asyncio
async def test_terminal_job_is_not_rerun():
    store, channel = InMemoryJobStore(), RecordingChannel()
    await queue_job(store)
    await store.update("job-1", {"status": "cancelled"})
    script = FakeScriptWriter()

    job = await make_orchestrator(store, channel, make_backends(script=script)).run("job-1")

    assert job.status == "cancelled"
    assert script.calls == 0
    assert channel.events == []


@pytest.mark.asyncio
async def test_avatar_clips_overlay_when_enabled():
    store, channel = InMemoryJobStore(), RecordingChannel()
    await queue_job(store, enable_avatar=True, reference_images=["https://img.example/face.png"])
    avatar = FakeAvatar()
    compositor = FakeCompositor()

    job = await make_orchestrator(store, channel, make_backends(avatar=avatar), compositor=compositor).run("job-1")

    assert job.status == "completed"
    assert job.avatar_skipped is False
    assert all(scene.avatar_clip is not None for scene in job.scenes)
    assert {image for _, image in avatar.calls} == {"https://img.example/face.png"}
    assert all(clip.avatar is not None for clip in compositor.calls[0]["clips"])
    assert "Creating talking avatar" in channel.steps()


@pytest.mark.asyncio
async def test_avatar_without_backend_is_skipped():
    store, channel = InMemoryJobStore(), RecordingChannel()
    await queue_job(store, enable_avatar=True, reference_images=["https://img.example/face.png"])

    job = await make_orchestrator(store, channel, make_backends(avatar=None)).run("job-1")

    assert job.status == "completed"
    assert job.avatar_skipped is True
    assert "Creating talking avatar" not in channel.steps()


@pytest.mark.asyncio
async def test_avatar_skipped_when_narration_fell_back():
    store, channel = InMemoryJobStore(), RecordingChannel()
    await queue_job(store, enable_avatar=True, reference_images=["https://img.example/face.png"])
    avatar = FakeAvatar()

    job = await make_orchestrator(store, channel, make_backends(voice=None, avatar=avatar)).run("job-1")

    assert job.status == "completed"
    assert job.avatar_skipped is True
    assert avatar.calls == []
    assert all(scene.avatar_clip is None for scene in job.scenes)


@pytest.mark.asyncio
async def test_avatar_failure_skips_whole_stage():
    store, channel = InMemoryJobStore(), RecordingChannel()
    await queue_job(store, enable_avatar=True, reference_images=["https://img.example/face.png"])
    compositor = FakeCompositor()

    job = await make_orchestrator(
        store, channel, make_backends(avatar=FakeAvatar(fail=True)), compositor=compositor
    ).run("job-1")

    assert job.status == "completed"
    assert job.avatar_skipped is True
    assert all(clip.avatar is None for clip in compositor.calls[0]["clips"])


@pytest.mark.asyncio
async def test_upload_failure_keeps_local_path():
    store, channel = InMemoryJobStore(), RecordingChannel()
    await queue_job(store)

    class BrokenUploader(LocalArtifactUploader):
        async def upload(self, local_path, job_id, owner_id):
            raise OSError("bucket unreachable")

    orchestrator = make_orchestrator(store, channel, make_backends())
    orchestrator.uploader = BrokenUploader()

    job = await orchestrator.run("job-1")

    assert job.status == "completed"
    assert job.final_artifact.endswith("final.mp4")
