"""
Main entry point for composer module.

Renders the ordered scene clips into the final video with a single ffmpeg
invocation. The work directory (render graph, ffmpeg log, title file and
output) is kept after success or failure.
"""
from pathlib import Path
from typing import List, Optional

from shared.config import settings
from shared.errors import CompositeError
from shared.logging import get_logger
from .config import OUTPUT_AUDIO_CODEC, OUTPUT_PIXEL_FORMAT, OUTPUT_VIDEO_CODEC
from .render_graph import ClipInput, CompositionSettings, build_render_graph
from .utils import ProgressCallback, check_ffmpeg_available, run_ffmpeg_command

logger = get_logger("composer")


def build_ffmpeg_command(
    input_args: List[str],
    graph_path: Path,
    video_label: str,
    audio_label: str,
    duration: float,
    fps: int,
    output_path: Path
) -> List[str]:
    return [
        settings.ffmpeg_path,
        "-hide_banner",
        "-y",
        "-nostats",
        "-progress", "pipe:1",
        *input_args,
        "-filter_complex_script", str(graph_path),
        "-map", f"[{video_label}]",
        "-map", f"[{audio_label}]",
        "-c:v", OUTPUT_VIDEO_CODEC,
        "-preset", settings.ffmpeg_preset,
        "-crf", str(settings.ffmpeg_crf),
        "-pix_fmt", OUTPUT_PIXEL_FORMAT,
        "-r", str(fps),
        "-c:a", OUTPUT_AUDIO_CODEC,
        "-b:a", settings.output_audio_bitrate,
        "-movflags", "+faststart",
        "-t", f"{duration:.3f}",
        str(output_path),
    ]


async def compose(
    clips: List[ClipInput],
    composition: CompositionSettings,
    work_dir: Path,
    job_id: Optional[str] = None,
    on_progress: Optional[ProgressCallback] = None,
    output_path: Optional[Path] = None
) -> Path:
    """
    Composite per-scene clips into one video file.

    Args:
        clips: Scene clips in playback order
        composition: Canvas, transition, title and music settings
        work_dir: Directory for intermediate files (retained)
        job_id: Job ID for logging
        on_progress: Awaited with render fraction in [0, 1]
        output_path: Destination (default: work_dir/final.<ext>)

    Returns:
        Path to the rendered video

    Raises:
        CompositeError: If ffmpeg is unavailable, fails, or produces no output
    """
    if not check_ffmpeg_available(settings.ffmpeg_path):
        raise CompositeError(f"FFmpeg not found: {settings.ffmpeg_path}", job_id=job_id)

    work_dir = Path(work_dir)
    work_dir.mkdir(parents=True, exist_ok=True)
    output_path = Path(output_path or work_dir / f"final.{settings.output_extension}")

    graph = build_render_graph(clips, composition, work_dir)
    graph_path = work_dir / "render_graph.txt"
    graph_path.write_text(graph.filter_script, encoding="utf-8")

    cmd = build_ffmpeg_command(
        graph.input_args,
        graph_path,
        graph.video_label,
        graph.audio_label,
        graph.duration,
        composition.fps,
        output_path,
    )

    logger.info(
        f"Composing {len(clips)} clips ({graph.duration:.1f}s)",
        extra={
            "job_id": job_id,
            "clip_count": len(clips),
            "duration": graph.duration,
            "resolution": f"{composition.width}x{composition.height}",
            "work_dir": str(work_dir),
        }
    )

    await run_ffmpeg_command(
        cmd,
        log_path=work_dir / "ffmpeg.log",
        total_duration=graph.duration,
        timeout=settings.ffmpeg_timeout,
        on_progress=on_progress,
        job_id=job_id,
    )

    if not output_path.exists() or output_path.stat().st_size == 0:
        raise CompositeError(
            f"FFmpeg produced no output at {output_path}", job_id=job_id, work_dir=str(work_dir)
        )

    logger.info(
        f"Composed video ({output_path.stat().st_size / 1024 / 1024:.2f} MB)",
        extra={"job_id": job_id, "output_path": str(output_path)}
    )
    return output_path
