import subprocess
from unittest.mock import MagicMock, patch

import pytest

from multimodal.audio import extract_audio
from multimodal.errors import FrameExtractionError, MediaProcessingError, NoSceneBoundariesError
from multimodal.tools import run_ffmpeg
from multimodal.video import detect_scene_boundaries, render_frame


def _stream(returncode=0, stdout=b"", stderr=b""):
    process = MagicMock()
    process.communicate.return_value = (stdout, stderr)
    process.returncode = returncode
    stream = MagicMock()
    stream.run_async.return_value = process
    return stream, process


def test_run_ffmpeg_returns_output():
    stream, _ = _stream(stdout=b"out", stderr=b"err")

    assert run_ffmpeg(stream, timeout_seconds=5, action="test") == (b"out", b"err")
    stream.run_async.assert_called_once_with(pipe_stdout=True, pipe_stderr=True)


def test_run_ffmpeg_non_zero_exit_includes_stderr_tail():
    stream, _ = _stream(returncode=1, stderr=b"Invalid data found when processing input")

    with pytest.raises(MediaProcessingError) as exc_info:
        run_ffmpeg(stream, timeout_seconds=5, action="audio extraction")

    assert "Invalid data found" in str(exc_info.value)
    assert exc_info.value.stage == "media_processing"


def test_run_ffmpeg_missing_binary():
    stream = MagicMock()
    stream.run_async.side_effect = FileNotFoundError("ffmpeg")

    with pytest.raises(MediaProcessingError):
        run_ffmpeg(stream, timeout_seconds=5, action="test")


def test_run_ffmpeg_timeout_kills_process():
    stream, process = _stream()
    process.communicate.side_effect = [subprocess.TimeoutExpired("ffmpeg", 1), (b"", b"")]

    with pytest.raises(MediaProcessingError) as exc_info:
        run_ffmpeg(stream, timeout_seconds=1, action="scene detection")

    process.kill.assert_called_once()
    assert "timed out" in str(exc_info.value)


def test_detect_scene_boundaries_parses_showinfo():
    stderr = (
        b"[Parsed_showinfo_1 @ 0x1] n:0 pts:0 pts_time:1.25 pos:1\n"
        b"[Parsed_showinfo_1 @ 0x1] n:1 pts:0 pts_time:4.5 pos:2\n"
    )
    with patch("multimodal.video.run_ffmpeg", return_value=(b"", stderr)) as mock_run:
        boundaries = detect_scene_boundaries("video.mp4", threshold=0.3, timeout_seconds=10)

    assert boundaries == [1.25, 4.5]
    assert mock_run.call_args.kwargs["timeout_seconds"] == 10


def test_detect_scene_boundaries_without_output_raises():
    with patch("multimodal.video.run_ffmpeg", return_value=(b"", b"frame=0 fps=0.0")):
        with pytest.raises(NoSceneBoundariesError):
            detect_scene_boundaries("video.mp4")


def test_render_frame_missing_output_raises(tmp_path):
    output = tmp_path / "frame.jpg"
    with patch("multimodal.video.run_ffmpeg", return_value=(b"", b"")):
        with pytest.raises(FrameExtractionError) as exc_info:
            render_frame("video.mp4", 2.5, str(output))

    assert exc_info.value.timestamp == 2.5


def test_render_frame_wraps_ffmpeg_failure(tmp_path):
    output = tmp_path / "frame.jpg"
    with patch("multimodal.video.run_ffmpeg", side_effect=MediaProcessingError("boom")):
        with pytest.raises(FrameExtractionError):
            render_frame("video.mp4", 1.0, str(output))


def test_extract_audio_returns_output_path(tmp_path):
    output = str(tmp_path / "audio.m4a")
    with patch("multimodal.audio.run_ffmpeg", return_value=(b"", b"")) as mock_run:
        assert extract_audio("video.mp4", output, timeout_seconds=30) == output

    assert mock_run.call_args.kwargs["action"] == "audio extraction"
