"""
Unit tests for session path layout.
"""

import pytest

from src.recorder.path_builder import PathBuilder, create_path_builder, sanitize


def test_sanitize_replaces_reserved_characters():
    assert sanitize('a/b\\c:d*e?f"g<h>i|j') == "a_b_c_d_e_f_g_h_i_j"
    assert sanitize("雑談 Room") == "雑談 Room"


def test_session_layout(tmp_path):
    paths = create_path_builder(tmp_path, "Room: A", "1700000000000_100", "m4a")

    assert paths.dir == tmp_path / "Room_ A_1700000000000_100"
    assert paths.speaker_raw(42) == paths.dir / "42.pcm"
    assert paths.mixed_audio() == tmp_path / "Room_ A_1700000000000_100_full.m4a"


def test_raw_files_are_listed_in_order(tmp_path):
    paths = PathBuilder(tmp_path / "session")
    paths.ensure_dir()
    for speaker_id in (20, 10):
        paths.speaker_raw(speaker_id).write_bytes(b"\x00" * 4)
    (paths.dir / "notes.txt").write_text("x")

    files = paths.speaker_raw_files()

    assert [PathBuilder.speaker_id_from(f) for f in files] == [10, 20]


def test_speaker_id_from_invalid_name(tmp_path):
    with pytest.raises(ValueError):
        PathBuilder.speaker_id_from(tmp_path / "mixed.pcm")


def test_remove_dir_if_empty(tmp_path):
    paths = PathBuilder(tmp_path / "session")
    assert paths.remove_dir_if_empty() is False

    paths.ensure_dir()
    paths.speaker_raw(1).write_bytes(b"")
    assert paths.remove_dir_if_empty() is False

    paths.speaker_raw(1).unlink()
    assert paths.remove_dir_if_empty() is True
    assert not paths.dir.exists()
