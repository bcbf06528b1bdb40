import asyncio
from collections.abc import AsyncIterator
from logging import getLogger

import discord

from .connection import AudioPacket, SpeakingListener

logger = getLogger(__name__)


class DemultiplexSink(discord.sinks.Sink):
    """
    受信したPCMを話者ごとの asyncio.Queue に振り分けるシンク。

    書き込みでブロックするとWebsocketのヘルスチェックが失敗する可能性があるため、
    write はデータをイベントループへ渡すだけにして、ファイル書き込みは録音セッション側で行う。
    """

    def __init__(
        self,
        loop: asyncio.AbstractEventLoop,
        *,
        queue_size: int = 1000,
        filters=None,
    ):
        super().__init__(filters=filters)
        self.loop = loop
        self.queue_size = queue_size

        self._streams: dict[int, asyncio.Queue[AudioPacket | None]] = {}
        self._ended: set[int] = set()
        self._listeners: list[SpeakingListener] = []
        self._is_closed = False

    def write(self, data: bytes, user: int) -> None:
        """
        py-cord 2.6系の受信スレッドから、デコード済みPCMとユーザーIDで同期的に呼ばれる。
        2.7以降は引数の型が変わるため pyproject.toml で 2.6 系に固定している。
        実際の振り分けはイベントループのスレッドで行う。
        """
        if self._is_closed:
            return
        self.loop.call_soon_threadsafe(self._dispatch, int(user), bytes(data))

    def _dispatch(self, user: int, data: bytes):
        if self._is_closed or user in self._ended:
            return

        queue = self._streams.get(user)
        if queue is None:
            queue = self._queue_for(user)
            for listener in list(self._listeners):
                listener(user)

        try:
            queue.put_nowait(AudioPacket(user, data))
        except asyncio.QueueFull:
            logger.warning(f"Audio queue is full. Discarding data for user {user}.")

    def _queue_for(self, user: int) -> asyncio.Queue[AudioPacket | None]:
        if user not in self._streams:
            self._streams[user] = asyncio.Queue(maxsize=self.queue_size)
        return self._streams[user]

    def add_speaking_listener(self, listener: SpeakingListener):
        self._listeners.append(listener)
        # 登録前にすでに話し始めていた話者にも通知する
        for user in list(self._streams):
            listener(user)

    async def stream(self, user: int) -> AsyncIterator[AudioPacket]:
        if self._is_closed and user not in self._streams:
            # 閉じた後に作ったキューには終端が届かない
            return
        queue = self._queue_for(user)
        while True:
            item = await queue.get()
            if item is None:
                return
            yield item

    def end_stream(self, user: int):
        if user in self._ended:
            return
        self._ended.add(user)
        self._put_sentinel(self._queue_for(user))

    def close(self):
        if self._is_closed:
            return
        self._is_closed = True
        for user, queue in self._streams.items():
            if user not in self._ended:
                self._put_sentinel(queue)
        logger.info("DemultiplexSink closed.")

    def _put_sentinel(self, queue: asyncio.Queue[AudioPacket | None]):
        # 満杯でも終端は必ず届ける
        while True:
            try:
                queue.put_nowait(None)
                return
            except asyncio.QueueFull:
                queue.get_nowait()

    def cleanup(self):
        self.finished = True
