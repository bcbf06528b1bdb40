from logging import getLogger
from pathlib import Path
from typing import IO

from src.bot.enums import TrackState

logger = getLogger(__name__)


class SpeakerTrack:
    """
    1人の話者の無音補正済みPCMファイル。

    ファイルは最初の空でないパケットを受け取った時点 (PENDING → RECORDING) で作成し、
    無音で参加しただけの話者について空ファイルが残らないようにする。
    """

    def __init__(self, speaker_id: int, path: Path):
        self.speaker_id = speaker_id
        self.path = path
        self.state = TrackState.PENDING
        self.written_bytes = 0
        self.first_packet_offset_ms: float | None = None
        self._file: IO[bytes] | None = None

    @property
    def recording(self) -> bool:
        return self.state is TrackState.RECORDING

    def open(self, first_packet_offset_ms: float):
        if self.state is not TrackState.PENDING:
            raise RuntimeError(f"Track for {self.speaker_id} is already {self.state}")
        self._file = open(self.path, "wb")
        self.first_packet_offset_ms = first_packet_offset_ms
        self.state = TrackState.RECORDING
        logger.info(
            f"Created audio file for speaker {self.speaker_id}: {self.path} "
            f"(first packet at {first_packet_offset_ms:.0f}ms)"
        )

    def write(self, data: bytes):
        """ブロッキングI/Oなので `asyncio.to_thread` 経由で呼ぶこと"""
        if self._file is None or self.state is not TrackState.RECORDING:
            raise RuntimeError(f"Track for {self.speaker_id} is not recording")
        self._file.write(data)
        self.written_bytes += len(data)

    def close(self):
        if self._file is not None and not self._file.closed:
            self._file.flush()
            self._file.close()
        self.state = TrackState.CLOSED
