"""
プラットフォームクライアントとボイスゲートウェイの抽象。

録音処理はこのモジュールのインターフェースにのみ依存し、
py-cordへの対応付けは `src.voice.pycord` が行う。
"""

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass, field


class LookupFailure(Exception):
    """チャンネルやメンバーの取得に失敗した場合のエラー"""

    pass


@dataclass(frozen=True)
class MemberInfo:
    id: int
    bot: bool = False


@dataclass(frozen=True)
class ChannelInfo:
    id: int
    name: str
    guild_id: int
    members: tuple[MemberInfo, ...] = field(default_factory=tuple)

    @property
    def humans(self) -> list[MemberInfo]:
        return [m for m in self.members if not m.bot]

    @property
    def human_count(self) -> int:
        return len(self.humans)


@dataclass(frozen=True)
class AudioPacket:
    speaker_id: int
    payload: bytes


SpeakingListener = Callable[[int], None]


class VoiceConnection(ABC):
    """1つのボイスチャンネルへの接続"""

    @abstractmethod
    async def wait_ready(self) -> None:
        """接続が音声を受信できる状態になるまで待つ"""
        pass

    @abstractmethod
    def add_speaking_listener(self, listener: SpeakingListener) -> None:
        """話者が話し始めたときに話者IDで呼ばれるリスナーを登録する"""
        pass

    @abstractmethod
    def subscribe(self, speaker_id: int) -> AsyncIterator[AudioPacket]:
        pass

    @abstractmethod
    def end_stream(self, speaker_id: int) -> None:
        pass

    @abstractmethod
    def close_streams(self) -> None:
        """すべての購読中ストリームを終了させる"""
        pass

    def decode(self, packet: AudioPacket) -> bytes:
        return packet.payload

    @abstractmethod
    async def destroy(self) -> None:
        pass


class WorkerClient(ABC):
    """ワーカー1台分のプラットフォームクライアント"""

    @property
    @abstractmethod
    def user_id(self) -> int | None:
        pass

    @abstractmethod
    async def fetch_channel(self, channel_id: int) -> ChannelInfo | None:
        """
        ボイスチャンネルを取得する。

        チャンネルが存在しない場合は None を返し、
        取得自体に失敗した場合は LookupFailure を送出する。
        """
        pass

    @abstractmethod
    def join(self, channel: ChannelInfo) -> VoiceConnection:
        pass
