from pathlib import Path
from typing import Annotated

import typer

from src.cli.mix import handle_mix_command

app = typer.Typer(help="Voice recorder CLI")


@app.command()
def run() -> None:
    """録音Botを起動"""
    from main import main

    main()


@app.command()
def mix(
    session_dir: Annotated[
        Path,
        typer.Argument(
            help="話者ごとのPCMファイルが残っているセッションディレクトリ",
            exists=True,
            file_okay=False,
        ),
    ],
    keep: Annotated[
        bool,
        typer.Option("--keep", help="ミックス後もPCMファイルを削除しない"),
    ] = False,
) -> None:
    """ミックスに失敗したセッションをもう一度ミックス"""
    handle_mix_command(session_dir, keep)


if __name__ == "__main__":
    app()
