"""
Unit tests for compose (graph file, command line, output checks).
"""
from unittest.mock import AsyncMock, patch

import pytest

from shared.errors import CompositeError
from shared.models.scene import AssetRef
from modules.composer import ClipInput, CompositionSettings, compose
from modules.composer.process import build_ffmpeg_command


def sample_clips(count: int = 2):
    return [
        ClipInput(
            motion=AssetRef(uri=f"https://cdn.example.com/clip{i}.mp4", source="animatediff"),
            audio=AssetRef(uri=f"/media/voice/voice{i}.mp3", source="voice"),
            duration=5.0,
        )
        for i in range(count)
    ]


def write_output(*args, **kwargs):
    """run_ffmpeg_command stand-in that leaves a rendered file behind."""
    cmd = args[0]
    with open(cmd[-1], "wb") as f:
        f.write(b"\x00\x00\x00\x18ftypmp42")


class TestBuildFFmpegCommand:
    """Tests for build_ffmpeg_command."""

    def test_command_shape(self, tmp_path):
        cmd = build_ffmpeg_command(
            ["-i", "a.mp4"], tmp_path / "graph.txt", "vjoin", "ajoin", 9.5, 30, tmp_path / "out.mp4"
        )

        assert cmd[0] == "ffmpeg"
        assert cmd[cmd.index("-progress") + 1] == "pipe:1"
        assert cmd[cmd.index("-filter_complex_script") + 1] == str(tmp_path / "graph.txt")
        assert ["-map", "[vjoin]", "-map", "[ajoin]"] == cmd[cmd.index("-map"):cmd.index("-map") + 4]
        assert cmd[cmd.index("-t") + 1] == "9.500"
        assert cmd[-1] == str(tmp_path / "out.mp4")


class TestCompose:
    """Tests for compose."""

    @pytest.mark.asyncio
    @patch("modules.composer.process.check_ffmpeg_available", return_value=False)
    async def test_missing_ffmpeg(self, mock_check, tmp_path):
        with pytest.raises(CompositeError, match="FFmpeg not found"):
            await compose(sample_clips(), CompositionSettings(), tmp_path, job_id="j1")

    @pytest.mark.asyncio
    @patch("modules.composer.process.check_ffmpeg_available", return_value=True)
    async def test_writes_graph_and_returns_output(self, mock_check, tmp_path):
        on_progress = AsyncMock()
        work_dir = tmp_path / "jobs" / "j1"

        with patch(
            "modules.composer.process.run_ffmpeg_command", new=AsyncMock(side_effect=write_output)
        ) as run:
            output = await compose(
                sample_clips(), CompositionSettings(), work_dir, job_id="j1", on_progress=on_progress
            )

        assert output == work_dir / "final.mp4"
        assert output.stat().st_size > 0
        graph = (work_dir / "render_graph.txt").read_text(encoding="utf-8")
        assert "xfade=transition=fade" in graph
        kwargs = run.await_args.kwargs
        assert kwargs["log_path"] == work_dir / "ffmpeg.log"
        assert kwargs["total_duration"] == 9.5
        assert kwargs["on_progress"] is on_progress
        assert kwargs["job_id"] == "j1"

    @pytest.mark.asyncio
    @patch("modules.composer.process.check_ffmpeg_available", return_value=True)
    async def test_custom_output_path(self, mock_check, tmp_path):
        target = tmp_path / "renders" / "video.mp4"
        target.parent.mkdir()

        with patch("modules.composer.process.run_ffmpeg_command", new=AsyncMock(side_effect=write_output)):
            output = await compose(sample_clips(1), CompositionSettings(), tmp_path / "work", output_path=target)

        assert output == target

    @pytest.mark.asyncio
    @patch("modules.composer.process.check_ffmpeg_available", return_value=True)
    async def test_empty_output_is_an_error(self, mock_check, tmp_path):
        with patch("modules.composer.process.run_ffmpeg_command", new=AsyncMock()):
            with pytest.raises(CompositeError, match="produced no output") as exc_info:
                await compose(sample_clips(), CompositionSettings(), tmp_path, job_id="j1")

        assert exc_info.value.work_dir == str(tmp_path)

    @pytest.mark.asyncio
    @patch("modules.composer.process.check_ffmpeg_available", return_value=True)
    async def test_ffmpeg_failure_propagates(self, mock_check, tmp_path):
        failure = CompositeError("FFmpeg exited with code 1", returncode=1)

        with patch("modules.composer.process.run_ffmpeg_command", new=AsyncMock(side_effect=failure)):
            with pytest.raises(CompositeError, match="exited with code 1"):
                await compose(sample_clips(), CompositionSettings(), tmp_path)

        assert (tmp_path / "render_graph.txt").exists()
