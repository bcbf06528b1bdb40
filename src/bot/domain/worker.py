from dataclasses import dataclass

from src.voice.connection import WorkerClient


@dataclass
class Worker:
    """1つのボイスチャンネルにだけ参加できるプラットフォーム接続"""

    index: int
    client: WorkerClient
    busy: bool = False

    @property
    def name(self) -> str:
        return f"Bot {self.index + 1}"
