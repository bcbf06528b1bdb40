"""
Unit tests for FFmpegMixer command construction and error mapping.
"""

import subprocess
from pathlib import Path
from unittest.mock import patch

import pytest

from src.mixer.ffmpeg import FFmpegMixer, FFmpegNotFoundError
from src.mixer.mixer import MixerError, MixInput, NoAudioToMixError


@pytest.fixture
def ffmpeg():
    return FFmpegMixer("/usr/bin/ffmpeg", gain=2.0, limit=0.95, bitrate="128k")


def make_job(tmp_path: Path, *speaker_ids: int):
    return tuple(MixInput(tmp_path / f"{i}.pcm", i) for i in speaker_ids)


# -------------------------------------------------------------- #
# Command construction
# -------------------------------------------------------------- #


def test_single_track_is_converted_without_filter(ffmpeg, tmp_path):
    job = make_job(tmp_path, 1)
    output = tmp_path / "out" / "session_full.mp3"

    with patch("src.mixer.ffmpeg.subprocess.run") as run:
        assert ffmpeg.mix(job, output) == output

    command = run.call_args.args[0]
    assert command[:9] == [
        "/usr/bin/ffmpeg",
        "-f",
        "s16le",
        "-ar",
        "48000",
        "-ac",
        "2",
        "-i",
        str(job[0].path),
    ]
    assert command[-4:] == ["-b:a", "128k", "-y", str(output)]
    assert "-filter_complex" not in command
    assert output.parent.is_dir()


def test_multiple_tracks_are_mixed_with_gain_and_limiter(ffmpeg, tmp_path):
    job = make_job(tmp_path, 1, 2, 3)
    output = tmp_path / "session_full.mp3"

    with patch("src.mixer.ffmpeg.subprocess.run") as run:
        ffmpeg.mix(job, output)

    command = run.call_args.args[0]
    assert command.count("-i") == 3
    assert command.count("s16le") == 3
    graph = command[command.index("-filter_complex") + 1]
    assert graph.startswith("[0:a][1:a][2:a]amix=inputs=3:duration=longest:normalize=0")
    assert "volume=0.6667" in graph
    assert graph.endswith("alimiter=limit=0.95[aout]")
    assert command[command.index("-map") + 1] == "[aout]"
    assert run.call_args.kwargs["check"] is True


def test_empty_job_is_rejected(ffmpeg, tmp_path):
    with patch("src.mixer.ffmpeg.subprocess.run") as run:
        with pytest.raises(NoAudioToMixError):
            ffmpeg.mix((), tmp_path / "out.mp3")
    run.assert_not_called()


# -------------------------------------------------------------- #
# Errors
# -------------------------------------------------------------- #


def test_process_failure_carries_stderr(ffmpeg, tmp_path):
    error = subprocess.CalledProcessError(1, ["ffmpeg"], stderr="Invalid data found\n")

    with patch("src.mixer.ffmpeg.subprocess.run", side_effect=error):
        with pytest.raises(MixerError) as exc_info:
            ffmpeg.mix(make_job(tmp_path, 1, 2), tmp_path / "out.mp3")

    assert "Return Code: 1" in str(exc_info.value)
    assert "Invalid data found" in str(exc_info.value)


def test_missing_executable(ffmpeg, tmp_path):
    with patch("src.mixer.ffmpeg.subprocess.run", side_effect=FileNotFoundError()):
        with pytest.raises(FFmpegNotFoundError):
            ffmpeg.mix(make_job(tmp_path, 1), tmp_path / "out.mp3")


def test_unconfigured_path(tmp_path):
    with patch("src.mixer.ffmpeg.subprocess.run") as run:
        with pytest.raises(FFmpegNotFoundError):
            FFmpegMixer(None).mix(make_job(tmp_path, 1), tmp_path / "out.mp3")
    run.assert_not_called()
