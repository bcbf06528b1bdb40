"""
Unit tests for the `mix` CLI command that re-mixes leftover raw tracks.
"""

import pytest
from dependency_injector import providers
from typer.testing import CliRunner

from cli import app
from conftest import FakeMixer
from container import container
from src.mixer.mixer import MixerError
from src.recorder.path_builder import PathBuilder

runner = CliRunner()


@pytest.fixture
def session_dir(tmp_path):
    paths = PathBuilder(tmp_path / "Room A_1700000000000_100")
    paths.ensure_dir()
    for speaker_id in (2, 1):
        paths.speaker_raw(speaker_id).write_bytes(b"\x00" * 16)
    return paths.dir


@pytest.fixture
def fake_mixer():
    mixer = FakeMixer()
    with container.mixer.override(providers.Object(mixer)):
        yield mixer


def test_mix_removes_raw_files(session_dir, fake_mixer):
    result = runner.invoke(app, ["mix", str(session_dir)])

    assert result.exit_code == 0
    kind, job, output = fake_mixer.calls[0]
    assert kind == "mix"
    assert [item.speaker_id for item in job] == [1, 2]
    assert output == session_dir.parent / "Room A_1700000000000_100_full.mp3"
    assert not session_dir.exists()


def test_mix_keep_leaves_raw_files(session_dir, fake_mixer):
    result = runner.invoke(app, ["mix", str(session_dir), "--keep"])

    assert result.exit_code == 0
    assert len(list(session_dir.glob("*.pcm"))) == 2


def test_mix_failure_exits_non_zero(session_dir, fake_mixer):
    fake_mixer.error = MixerError("boom")

    result = runner.invoke(app, ["mix", str(session_dir)])

    assert result.exit_code == 1
    assert len(list(session_dir.glob("*.pcm"))) == 2


def test_mix_without_raw_files(tmp_path, fake_mixer):
    result = runner.invoke(app, ["mix", str(tmp_path)])

    assert result.exit_code == 1
    assert fake_mixer.calls == []
