import asyncio
import logging
import time
from collections.abc import Mapping
from typing import Protocol

from discord.ext import tasks

from src.recorder.session import RecordingSession
from src.voice.connection import ChannelInfo, LookupFailure, VoiceConnection, WorkerClient

from ..domain.worker import Worker
from ..enums import StopReason

logger = logging.getLogger(__name__)


class SchedulerError(Exception):
    pass


class AlreadyRecordingError(SchedulerError):
    pass


class NoAvailableWorkerError(SchedulerError):
    pass


class ConnectionTimeoutError(SchedulerError):
    pass


class SessionFactory(Protocol):
    def __call__(
        self,
        *,
        channel: ChannelInfo,
        session_id: str,
        worker_index: int,
        connection: VoiceConnection,
        notify_channel_id: int | None,
    ) -> RecordingSession: ...


def parse_worker_preferences(raw: str | None) -> dict[str, int]:
    """`Room A:0,Room B:1` 形式の文字列をチャンネル名ラベル → ワーカー番号の表に変換する"""
    preferences: dict[str, int] = {}
    if not raw:
        return preferences
    for entry in raw.split(","):
        if not entry.strip():
            continue
        label, sep, index = entry.rpartition(":")
        if not sep or not label.strip() or not index.strip().isdigit():
            raise ValueError(f"Invalid worker preference entry: {entry!r}")
        preferences[label.strip()] = int(index)
    return preferences


class SchedulerState:
    """
    スケジューラの共有状態。

    イベントループのスレッドからのみ操作するためロックは持たない。
    """

    def __init__(self):
        self.sessions: dict[int, RecordingSession] = {}
        self.reserved: set[int] = set()
        self.timers: dict[int, asyncio.Task] = {}
        # ポーリングから切り離して実行中の停止処理
        self.stop_tasks: set[asyncio.Task] = set()

    def is_recording(self, channel_id: int) -> bool:
        return channel_id in self.sessions or channel_id in self.reserved

    def cancel_timer(self, channel_id: int) -> bool:
        task = self.timers.pop(channel_id, None)
        if task is None:
            return False
        task.cancel()
        return True


class WorkerPoolScheduler:
    def __init__(
        self,
        workers: list[Worker],
        session_factory: SessionFactory,
        *,
        preferences: Mapping[str, int] | None = None,
        connect_timeout: float = 20.0,
        auto_stop_delay: float = 1.0,
        poll_interval: float = 10.0,
    ):
        self.workers = workers
        self.session_factory = session_factory
        self.preferences = dict(preferences or {})
        self.connect_timeout = connect_timeout
        self.auto_stop_delay = auto_stop_delay
        self.poll_interval = poll_interval
        self.state = SchedulerState()

    @property
    def sessions(self) -> dict[int, RecordingSession]:
        return self.state.sessions

    def session_for(self, channel_id: int) -> RecordingSession | None:
        return self.state.sessions.get(channel_id)

    def select_worker(self, channel_name: str) -> Worker:
        name = channel_name.lower()
        for label, index in self.preferences.items():
            if label.lower() not in name:
                continue
            if index >= len(self.workers):
                raise NoAvailableWorkerError(
                    f"Preferred worker {index} for {channel_name!r} does not exist"
                )
            if not self.workers[index].busy:
                return self.workers[index]
            break

        for worker in self.workers:
            if not worker.busy:
                return worker
        raise NoAvailableWorkerError(
            f"No available workers for recording (maximum {len(self.workers)} simultaneous recordings)"
        )

    async def start(
        self, channel: ChannelInfo, notify_channel_id: int | None = None
    ) -> str:
        if self.state.is_recording(channel.id):
            raise AlreadyRecordingError(f"Channel {channel.id} is already being recorded")

        worker = self.select_worker(channel.name)
        # 最初の待機より前にチャンネルとワーカーを確保する
        worker.busy = True
        self.state.reserved.add(channel.id)
        connection: VoiceConnection | None = None

        try:
            connection = worker.client.join(channel)
            try:
                await asyncio.wait_for(connection.wait_ready(), timeout=self.connect_timeout)
            except asyncio.TimeoutError as e:
                raise ConnectionTimeoutError(
                    f"Voice connection to {channel.name} was not ready within {self.connect_timeout}s"
                ) from e

            session_id = f"{int(time.time() * 1000)}_{channel.id}"
            session = self.session_factory(
                channel=channel,
                session_id=session_id,
                worker_index=worker.index,
                connection=connection,
                notify_channel_id=notify_channel_id,
            )
            session.start()
            self.state.sessions[channel.id] = session
        except (Exception, asyncio.CancelledError):
            worker.busy = False
            if connection is not None:
                await self._destroy_quietly(connection)
            raise
        finally:
            self.state.reserved.discard(channel.id)

        logger.info(f"{worker.name} assigned to {channel.name} ({channel.id})")
        return session_id

    async def _destroy_quietly(self, connection: VoiceConnection):
        try:
            await connection.destroy()
        except Exception:
            logger.exception("Failed to tear down partial voice connection")

    async def stop(self, channel_id: int, reason: StopReason = StopReason.MANUAL) -> bool:
        """
        録音を停止する。録音中でなければ何もせず False を返す。

        停止処理より先にセッションを登録から外すため、重複した停止要求でも
        終了処理は一度しか走らない。
        """
        session = self.state.sessions.pop(channel_id, None)
        if session is None:
            logger.debug(f"No active session for channel {channel_id}")
            return False

        self.state.cancel_timer(channel_id)
        worker = self.workers[session.worker_index]
        try:
            await session.stop(reason)
        except Exception:
            logger.exception(f"Error while finalizing session {session.session_id}")
        finally:
            worker.busy = False
            logger.info(f"{worker.name} released from channel {channel_id}")
        return True

    async def check_liveness(self, channel_id: int, client: WorkerClient | None = None):
        """
        イベント経由とポーリング経由の両方から呼ばれる、唯一の生存確認処理。

        Args:
            channel_id: 確認するボイスチャンネルのID。
            client: メンバー一覧の取得に使うクライアント。イベント経由では、そのイベントを
                受け取ったクライアントのキャッシュが最新なのでそれを渡す。
                省略時はセッションを担当するワーカーのクライアントを使う。
        """
        session = self.state.sessions.get(channel_id)
        if session is None:
            return

        if client is None:
            client = self.workers[session.worker_index].client
        try:
            channel = await client.fetch_channel(channel_id)
        except LookupFailure as e:
            # 誤って停止しないよう、取得できない間は参加者がいるものとみなす
            logger.warning(f"Could not fetch channel {channel_id}: {e}")
            return

        if channel is None:
            logger.info(f"Channel {channel_id} no longer exists, stopping immediately")
            self._spawn_stop(channel_id, StopReason.CHANNEL_GONE)
            return

        if channel.human_count > 0:
            if self.state.cancel_timer(channel_id):
                logger.info(f"Members returned to {channel.name}, auto-stop cancelled")
            return

        self._schedule_auto_stop(channel_id)

    def _spawn_stop(self, channel_id: int, reason: StopReason):
        # ミックスが終わるまで他のチャンネルの確認を止めないよう、別タスクで停止する
        task = asyncio.create_task(self.stop(channel_id, reason))
        self.state.stop_tasks.add(task)
        task.add_done_callback(self.state.stop_tasks.discard)

    def _schedule_auto_stop(self, channel_id: int):
        if channel_id in self.state.timers:
            return
        logger.info(f"Channel {channel_id} is empty, stopping in {self.auto_stop_delay}s")
        self.state.timers[channel_id] = asyncio.create_task(
            self._auto_stop_after_delay(channel_id)
        )

    async def _auto_stop_after_delay(self, channel_id: int):
        await asyncio.sleep(self.auto_stop_delay)
        # stop() がこのタスク自身をキャンセルしないよう先に外しておく
        self.state.timers.pop(channel_id, None)
        await self.stop(channel_id, StopReason.EMPTY_CHANNEL)

    async def handle_voice_state_update(
        self,
        member_id: int,
        before_channel_id: int | None,
        after_channel_id: int | None,
        source: WorkerClient | None = None,
    ):
        """
        ボイス状態の変化を処理する。`source` はこのイベントを受け取ったクライアントで、
        参加者数はそのクライアントのキャッシュから数える。
        """
        if before_channel_id == after_channel_id:
            return

        worker = self._worker_for_user(member_id)
        if worker is not None:
            if before_channel_id is not None and after_channel_id is None:
                session = self.state.sessions.get(before_channel_id)
                if session is not None and session.worker_index == worker.index:
                    logger.warning(f"{worker.name} was disconnected from channel {before_channel_id}")
                    await self.stop(before_channel_id, StopReason.DISCONNECTED)
            return

        if before_channel_id is not None and (
            session := self.state.sessions.get(before_channel_id)
        ):
            session.end_speaker(member_id)
            await self.check_liveness(before_channel_id, source)
        if after_channel_id is not None and after_channel_id in self.state.sessions:
            await self.check_liveness(after_channel_id, source)

    def _worker_for_user(self, user_id: int) -> Worker | None:
        for worker in self.workers:
            if worker.client.user_id == user_id:
                return worker
        return None

    async def poll_once(self):
        for channel_id in list(self.state.sessions):
            try:
                await self.check_liveness(channel_id)
            except Exception:
                logger.exception(f"Liveness check failed for channel {channel_id}")

    def start_polling(self):
        if self._poll.is_running():
            return
        self._poll.change_interval(seconds=self.poll_interval)
        self._poll.start()
        logger.info(f"Liveness polling started (every {self.poll_interval}s)")

    @tasks.loop(seconds=10)
    async def _poll(self):
        logger.debug(f"Checking {len(self.state.sessions)} active sessions...")
        await self.poll_once()
