"""
Utility functions for composer module.

FFmpeg availability check and subprocess execution with progress parsing.
"""
import asyncio
import shutil
from pathlib import Path
from typing import Awaitable, Callable, List, Optional

from shared.errors import CompositeError
from shared.logging import get_logger

logger = get_logger("composer.utils")

ProgressCallback = Callable[[float], Awaitable[None]]


def check_ffmpeg_available(binary: str = "ffmpeg") -> bool:
    """
    Check if FFmpeg is installed and available in PATH.

    Returns:
        True if FFmpeg is available, False otherwise
    """
    return shutil.which(binary) is not None


def parse_progress_fraction(line: str, total_duration: float) -> Optional[float]:
    """
    Fraction complete from one `-progress` line, or None if it carries no time.

    ffmpeg reports `out_time_us` (and, despite the name, `out_time_ms`) in
    microseconds. `progress=end` means done.
    """
    key, sep, value = line.strip().partition("=")
    if not sep:
        return None
    if key == "progress" and value == "end":
        return 1.0
    if key not in ("out_time_us", "out_time_ms") or total_duration <= 0:
        return None
    try:
        micros = int(value)
    except ValueError:
        # "N/A" before the first frame is written
        return None
    return min(1.0, max(0.0, micros / (total_duration * 1_000_000)))


def _log_tail(log_path: Path, lines: int = 20) -> str:
    try:
        return "\n".join(log_path.read_text(errors="replace").splitlines()[-lines:])
    except OSError:
        return ""


async def run_ffmpeg_command(
    cmd: List[str],
    log_path: Path,
    total_duration: float,
    timeout: float,
    on_progress: Optional[ProgressCallback] = None,
    job_id: Optional[str] = None,
) -> None:
    """
    Run FFmpeg, streaming `-progress pipe:1` output into `on_progress`.

    stderr is written to `log_path` and kept for diagnosis. On timeout or
    task cancellation the subprocess is killed before the error propagates.

    Args:
        cmd: FFmpeg command (must include `-progress pipe:1`)
        log_path: File receiving ffmpeg's stderr
        total_duration: Expected output length in seconds
        timeout: Seconds before the process is killed
        on_progress: Awaited with a fraction in [0, 1] as rendering advances
        job_id: Job ID for logging

    Raises:
        CompositeError: Non-zero exit, timeout, or ffmpeg could not start
    """
    logger.info(
        f"Running FFmpeg command: {' '.join(cmd)}",
        extra={"job_id": job_id, "command": cmd}
    )

    with open(log_path, "wb") as log_file:
        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=log_file
            )
        except OSError as e:
            raise CompositeError(f"Failed to start FFmpeg: {e}", job_id=job_id) from e

        async def pump_progress() -> None:
            last = 0.0
            async for raw in process.stdout:
                fraction = parse_progress_fraction(raw.decode(errors="replace"), total_duration)
                if fraction is not None and fraction > last and on_progress is not None:
                    last = fraction
                    await on_progress(fraction)
            await process.wait()

        try:
            await asyncio.wait_for(pump_progress(), timeout=timeout)
        except asyncio.TimeoutError:
            await _kill(process)
            raise CompositeError(
                f"FFmpeg timeout after {timeout}s", job_id=job_id, returncode=process.returncode
            )
        except asyncio.CancelledError:
            await _kill(process)
            logger.warning("FFmpeg terminated on cancellation", extra={"job_id": job_id})
            raise

    if process.returncode != 0:
        tail = _log_tail(log_path)
        logger.error(
            f"FFmpeg exited with code {process.returncode}",
            extra={"job_id": job_id, "returncode": process.returncode, "log_path": str(log_path)}
        )
        raise CompositeError(
            f"FFmpeg exited with code {process.returncode}: {tail[-1000:]}",
            job_id=job_id,
            returncode=process.returncode,
            work_dir=str(log_path.parent),
        )


async def _kill(process: asyncio.subprocess.Process) -> None:
    if process.returncode is None:
        process.kill()
        await process.wait()
