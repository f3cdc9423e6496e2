"""
Render graph construction for composer module.

Turns the ordered per-scene clips into ffmpeg input arguments plus a
filter_complex script. Building the graph is pure; running it lives in
process.py.

Per scene: scale/pad to the canvas -> Ken Burns on still holds -> optional
avatar overlay -> frame-exact trim to the scene duration. Scenes are then
joined with concat or xfade/acrossfade chains, music is mixed under the
narration, and the title is drawn over the opening seconds.
"""
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Tuple

from shared.config import settings
from shared.errors import CompositeError
from shared.models.job import JobConfig
from shared.models.scene import AssetRef
from modules.generators.fallbacks import is_fallback_uri, parse_fallback
from .config import (
    AUDIO_SAMPLE_RATE,
    AVATAR_MARGIN,
    AVATAR_SIZE,
    KEN_BURNS_MAX_ZOOM,
    KEN_BURNS_ZOOM_STEP,
    OUTPUT_PIXEL_FORMAT,
    PLACEHOLDER_COLOR,
    TITLE_SECONDS,
    XFADE_TRANSITIONS,
    get_output_dimensions_from_aspect_ratio,
)


@dataclass
class ClipInput:
    """One scene's assets, in final order."""

    motion: AssetRef
    audio: AssetRef
    duration: float
    avatar: Optional[AssetRef] = None


@dataclass
class CompositionSettings:
    width: int = 1920
    height: int = 1080
    fps: int = 30
    title: Optional[str] = None
    transition: str = "fade"
    transition_duration: float = 0.5
    ken_burns: bool = True
    music_track: Optional[str] = None
    music_volume: float = 0.3

    @classmethod
    def from_job_config(cls, config: JobConfig, title: Optional[str] = None) -> "CompositionSettings":
        width, height = get_output_dimensions_from_aspect_ratio(config.aspect_ratio)
        return cls(
            width=width,
            height=height,
            fps=settings.output_fps,
            title=title if config.title_overlay else None,
            transition=config.transition,
            transition_duration=settings.transition_duration,
            music_track=config.music_track if config.enable_music else None,
            music_volume=settings.music_volume,
        )


@dataclass
class RenderGraph:
    input_args: List[str]
    filter_script: str
    video_label: str
    audio_label: str
    duration: float
    files: List[Path] = field(default_factory=list)


def escape_filter_path(path: Path) -> str:
    """Escape a path for use as a filter option value."""
    return str(path).replace("\\", "/").replace(":", "\\:").replace("'", "\\'")


class _Inputs:
    """Accumulates -i arguments and hands out input indices."""

    def __init__(self):
        self.args: List[str] = []
        self.count = 0

    def add(self, *args: str) -> int:
        self.args.extend(args)
        self.count += 1
        return self.count - 1


def _color_source(duration: float, comp: CompositionSettings) -> Tuple[str, ...]:
    return (
        "-f", "lavfi",
        "-t", f"{duration:.3f}",
        "-i", f"color=c={PLACEHOLDER_COLOR}:s={comp.width}x{comp.height}:r={comp.fps}",
    )


def _video_input(ref: AssetRef, duration: float, comp: CompositionSettings) -> Tuple[Tuple[str, ...], bool]:
    """Input args for a motion slot, and whether it is a still that gets Ken Burns."""
    if is_fallback_uri(ref.uri):
        kind, params = parse_fallback(ref.uri)
        if kind == "still":
            image = params.get("image", "")
            if image and not is_fallback_uri(image):
                return ("-loop", "1", "-framerate", str(comp.fps), "-t", f"{duration:.3f}", "-i", image), True
        return _color_source(duration, comp), False
    return ("-i", ref.uri), False


def _audio_input(ref: AssetRef, duration: float) -> Tuple[str, ...]:
    if is_fallback_uri(ref.uri):
        return (
            "-f", "lavfi",
            "-t", f"{duration:.3f}",
            "-i", f"anullsrc=r={AUDIO_SAMPLE_RATE}:cl=stereo",
        )
    return ("-i", ref.uri)


def _scene_video_filter(source: str, out: str, duration: float, still: bool, comp: CompositionSettings) -> str:
    w, h, fps = comp.width, comp.height, comp.fps
    chain = [
        f"scale={w}:{h}:force_original_aspect_ratio=decrease",
        f"pad={w}:{h}:(ow-iw)/2:(oh-ih)/2:color={PLACEHOLDER_COLOR}",
        "setsar=1",
    ]
    if still and comp.ken_burns:
        chain.append(
            f"zoompan=z='min(1+{KEN_BURNS_ZOOM_STEP}*on,{KEN_BURNS_MAX_ZOOM})'"
            f":x='iw/2-(iw/zoom/2)':y='ih/2-(ih/zoom/2)':d=1:s={w}x{h}:fps={fps}"
        )
    chain += [
        f"fps={fps}",
        f"format={OUTPUT_PIXEL_FORMAT}",
        f"tpad=stop_mode=clone:stop_duration={duration:.3f}",
        f"trim=duration={duration:.3f}",
        "setpts=PTS-STARTPTS",
    ]
    return f"[{source}]{','.join(chain)}[{out}]"


def _scene_audio_filter(source: str, out: str, duration: float) -> str:
    return (
        f"[{source}]aresample={AUDIO_SAMPLE_RATE},"
        f"aformat=sample_fmts=fltp:channel_layouts=stereo,"
        f"apad,atrim=duration={duration:.3f},asetpts=PTS-STARTPTS[{out}]"
    )


def _avatar_filters(base: str, avatar_source: str, out: str, index: int, duration: float,
                    comp: CompositionSettings) -> List[str]:
    scaled = f"avs{index}"
    return [
        f"[{avatar_source}]scale={AVATAR_SIZE}:{AVATAR_SIZE},setsar=1,fps={comp.fps},"
        f"tpad=stop_mode=clone:stop_duration={duration:.3f},trim=duration={duration:.3f},"
        f"setpts=PTS-STARTPTS[{scaled}]",
        f"[{base}][{scaled}]overlay=W-w-{AVATAR_MARGIN}:H-h-{AVATAR_MARGIN}:eof_action=repeat[{out}]",
    ]


def effective_transition(comp: CompositionSettings, durations: List[float]) -> Tuple[Optional[str], float]:
    """
    Transition actually applied, and its duration.

    Crossfades overlap adjacent scenes, so the duration is capped at half
    the shortest scene; "none" or a single scene means plain concatenation.
    """
    if len(durations) < 2 or comp.transition not in XFADE_TRANSITIONS:
        return None, 0.0
    fade = min(comp.transition_duration, min(durations) / 2)
    if fade <= 0:
        return None, 0.0
    return comp.transition, round(fade, 3)


def build_render_graph(
    clips: List[ClipInput],
    comp: CompositionSettings,
    work_dir: Path
) -> RenderGraph:
    """
    Build ffmpeg inputs and the filter_complex script for `clips`.

    Raises:
        CompositeError: If there is nothing to render or a duration is invalid
    """
    if not clips:
        raise CompositeError("No clips to compose")
    if any(clip.duration <= 0 for clip in clips):
        raise CompositeError("Every clip needs a positive duration")

    inputs = _Inputs()
    filters: List[str] = []
    durations = [clip.duration for clip in clips]
    video_labels: List[str] = []
    audio_labels: List[str] = []

    for i, clip in enumerate(clips):
        video_args, still = _video_input(clip.motion, clip.duration, comp)
        video_index = inputs.add(*video_args)
        audio_index = inputs.add(*_audio_input(clip.audio, clip.duration))

        scene_video = f"v{i}"
        filters.append(_scene_video_filter(f"{video_index}:v", scene_video, clip.duration, still, comp))

        if clip.avatar is not None and not clip.avatar.is_fallback:
            avatar_index = inputs.add("-i", clip.avatar.uri)
            filters.extend(_avatar_filters(scene_video, f"{avatar_index}:v", f"vo{i}", i, clip.duration, comp))
            scene_video = f"vo{i}"

        filters.append(_scene_audio_filter(f"{audio_index}:a", f"a{i}", clip.duration))
        video_labels.append(scene_video)
        audio_labels.append(f"a{i}")

    transition, fade = effective_transition(comp, durations)
    if transition is None:
        pairs = "".join(f"[{v}][{a}]" for v, a in zip(video_labels, audio_labels))
        filters.append(f"{pairs}concat=n={len(clips)}:v=1:a=1[vjoin][ajoin]")
        total = sum(durations)
    else:
        video_prev, audio_prev = video_labels[0], audio_labels[0]
        elapsed = durations[0]
        for k in range(1, len(clips)):
            offset = elapsed - k * fade
            video_out = "vjoin" if k == len(clips) - 1 else f"vx{k}"
            audio_out = "ajoin" if k == len(clips) - 1 else f"ax{k}"
            filters.append(
                f"[{video_prev}][{video_labels[k]}]xfade=transition={transition}"
                f":duration={fade:.3f}:offset={offset:.3f}[{video_out}]"
            )
            filters.append(f"[{audio_prev}][{audio_labels[k]}]acrossfade=d={fade:.3f}[{audio_out}]")
            video_prev, audio_prev = video_out, audio_out
            elapsed += durations[k]
        total = sum(durations) - (len(clips) - 1) * fade

    video_label, audio_label = "vjoin", "ajoin"
    files: List[Path] = []

    if comp.music_track:
        music_index = inputs.add("-stream_loop", "-1", "-i", comp.music_track)
        filters.append(
            f"[{music_index}:a]aresample={AUDIO_SAMPLE_RATE},"
            f"aformat=sample_fmts=fltp:channel_layouts=stereo,"
            f"volume={comp.music_volume},atrim=duration={total:.3f}[music]"
        )
        filters.append(f"[{audio_label}][music]amix=inputs=2:duration=first:dropout_transition=0:normalize=0[amixed]")
        audio_label = "amixed"

    if comp.title:
        title_file = work_dir / "title.txt"
        title_file.write_text(comp.title, encoding="utf-8")
        files.append(title_file)
        filters.append(
            f"[{video_label}]drawtext=textfile='{escape_filter_path(title_file)}'"
            f":fontcolor=white:fontsize=h/15:box=1:boxcolor=black@0.5:boxborderw=20"
            f":x=(w-text_w)/2:y=h*0.1:enable='lt(t,{TITLE_SECONDS})'[vtitled]"
        )
        video_label = "vtitled"

    return RenderGraph(
        input_args=inputs.args,
        filter_script=";\n".join(filters),
        video_label=video_label,
        audio_label=audio_label,
        duration=round(total, 3),
        files=files,
    )
