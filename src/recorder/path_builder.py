import re
from pathlib import Path

_ILLEGAL_CHARS = re.compile(r'[\\/:*?"<>|]')


def sanitize(name: str) -> str:
    """ファイルシステムで使えない文字を `_` に置き換える"""
    return _ILLEGAL_CHARS.sub("_", name)


def create_path_builder(
    root: Path, channel_name: str, session_id: str, audio_encoding: str = "mp3"
) -> "PathBuilder":
    return PathBuilder(root / f"{sanitize(channel_name)}_{session_id}", audio_encoding)


class PathBuilder:
    def __init__(self, dir: Path, audio_encoding: str = "mp3"):
        self.dir = dir
        self.audio_encoding = audio_encoding

    def ensure_dir(self) -> Path:
        self.dir.mkdir(parents=True, exist_ok=True)
        return self.dir

    def speaker_raw(self, speaker_id: int) -> Path:
        return self.dir / f"{speaker_id}.pcm"

    def speaker_raw_files(self) -> list[Path]:
        return sorted(self.dir.glob("*.pcm"))

    def mixed_audio(self) -> Path:
        # セッションディレクトリの1つ上の階層に出力する
        return self.dir.parent / f"{self.dir.name}_full.{self.audio_encoding}"

    @staticmethod
    def speaker_id_from(path: Path) -> int:
        try:
            return int(path.stem)
        except ValueError:
            raise ValueError(f"Invalid raw audio file name: {path.name}")

    def remove_dir_if_empty(self) -> bool:
        if not self.dir.is_dir() or any(self.dir.iterdir()):
            return False
        self.dir.rmdir()
        return True
