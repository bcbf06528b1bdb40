from abc import ABC, abstractmethod
from pathlib import Path
from typing import NamedTuple


class MixerError(Exception):
    """ミキサー処理中に発生したエラーの基底クラス。"""

    pass


class NoAudioToMixError(MixerError):
    """ミックス対象の音声ファイルが指定されていない場合のエラー。"""

    pass


class MixInput(NamedTuple):
    path: Path
    speaker_id: int


# すべての入力はセッション開始時刻を原点として無音で揃えられている
MixJob = tuple[MixInput, ...]


class Mixer(ABC):
    """話者ごとのPCMファイルを1つの音声ファイルにまとめるための抽象基底クラス。"""

    def mix(self, job: MixJob, output_file: Path) -> Path:
        """
        複数の入力音声ファイルを1つの出力ファイルにミックスする。
        入力が1つの場合は単純なフォーマット変換になる。

        Args:
            job: ミックスするPCMファイルと話者IDの組。
            output_file: 出力ファイルのPathオブジェクト。
        """
        if not job:
            raise NoAudioToMixError("ミックスする音声ファイルが指定されていません。")

        output_file.parent.mkdir(parents=True, exist_ok=True)
        if len(job) == 1:
            self._convert_internal(job[0], output_file)
        else:
            self._mix_internal(job, output_file)
        return output_file

    @abstractmethod
    def _convert_internal(self, source: MixInput, output_file: Path):
        """具象クラスで実装される単一ファイルの変換処理。"""
        pass

    @abstractmethod
    def _mix_internal(self, job: MixJob, output_file: Path):
        """具象クラスで実装される実際のミックス処理。"""
        pass
