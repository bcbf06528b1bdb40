import subprocess
from logging import getLogger
from pathlib import Path

from src.recorder.pcm import CHANNELS, SAMPLE_RATE

from .mixer import Mixer, MixerError, MixInput, MixJob

logger = getLogger(__name__)


class FFmpegNotFoundError(MixerError):
    """FFmpeg実行ファイルが見つからない、または設定されていない場合のエラー。"""

    pass


class FFmpegMixer(Mixer):
    """FFmpegを使用して音声をミックスするクラス。"""

    def __init__(
        self,
        ffmpeg_path: str | None,
        gain: float = 2.0,
        limit: float = 0.95,
        bitrate: str = "128k",
    ):
        self.ffmpeg_path = ffmpeg_path
        self.gain = gain
        self.limit = limit
        self.bitrate = bitrate

    def _raw_input(self, path: Path) -> list[str]:
        return [
            "-f",
            "s16le",
            "-ar",
            str(SAMPLE_RATE),
            "-ac",
            str(CHANNELS),
            "-i",
            str(path),
        ]

    def _encode_args(self, output_file: Path) -> list[str]:
        return ["-b:a", self.bitrate, "-y", str(output_file)]

    def filter_complex(self, num_inputs: int) -> str:
        streams = "".join(f"[{i}:a]" for i in range(num_inputs))
        volume = self.gain / num_inputs
        return (
            f"{streams}amix=inputs={num_inputs}:duration=longest:normalize=0,"
            f"volume={volume:.4f},"
            f"alimiter=limit={self.limit}[aout]"
        )

    def convert_command(self, source: MixInput, output_file: Path) -> list[str]:
        return [
            self._executable(),
            *self._raw_input(source.path),
            *self._encode_args(output_file),
        ]

    def mix_command(self, job: MixJob, output_file: Path) -> list[str]:
        command = [self._executable()]
        for item in job:
            command.extend(self._raw_input(item.path))
        command.extend(
            [
                "-filter_complex",
                self.filter_complex(len(job)),
                "-map",
                "[aout]",
                *self._encode_args(output_file),
            ]
        )
        return command

    def _convert_internal(self, source: MixInput, output_file: Path):
        logger.info(f"Converting single track {source.path} to {output_file}")
        self._run(self.convert_command(source, output_file))

    def _mix_internal(self, job: MixJob, output_file: Path):
        logger.info(f"Mixing {len(job)} tracks into {output_file}")
        self._run(self.mix_command(job, output_file))

    def _executable(self) -> str:
        if not self.ffmpeg_path:
            raise FFmpegNotFoundError(
                "ffmpegの場所が設定されていません。FFMPEG_PATHを確認してください。"
            )
        return self.ffmpeg_path

    def _run(self, command: list[str]):
        try:
            subprocess.run(
                command, check=True, capture_output=True, text=True, encoding="utf-8"
            )
        except FileNotFoundError as e:
            raise FFmpegNotFoundError(
                "ffmpegが見つかりません。パスを確認するか、インストールしてください。"
            ) from e
        except subprocess.CalledProcessError as e:
            error_message = (
                f"ffmpegの実行に失敗しました。\n"
                f"Return Code: {e.returncode}\n"
                f"Stderr: {(e.stderr or '').strip()}"
            )
            raise MixerError(error_message) from e
