from pathlib import Path

import typer

from container import container
from src.mixer.mixer import MixerError, MixInput, MixJob
from src.recorder.path_builder import PathBuilder


def collect_session_files(path_builder: PathBuilder) -> MixJob:
    inputs: list[MixInput] = []
    for path in path_builder.speaker_raw_files():
        try:
            inputs.append(MixInput(path, path_builder.speaker_id_from(path)))
        except ValueError as e:
            typer.echo(f"スキップします: {e}", err=True)
    return tuple(inputs)


def handle_mix_command(session_dir: Path, keep: bool) -> None:
    from logging_config import load_logging_config

    load_logging_config(container.config.log_level())

    path_builder = PathBuilder(session_dir, container.config.audio_encoding())
    job = collect_session_files(path_builder)
    if not job:
        typer.echo(f"PCMファイルが見つかりません: {session_dir}", err=True)
        raise typer.Exit(1)

    try:
        output = container.mixer().mix(job, path_builder.mixed_audio())
    except MixerError as e:
        typer.echo(f"ミックスに失敗しました: {e}", err=True)
        raise typer.Exit(1)

    if not keep:
        for item in job:
            item.path.unlink(missing_ok=True)
        path_builder.remove_dir_if_empty()

    typer.echo(f"{len(job)}人分の音声をミックスしました: {output}")
