"""
Pytest configuration and shared fakes.

The fakes stand in for the platform client, the voice connection, the wall
clock and the external mixer so that capture, synchronization and scheduling
can be exercised without a Discord connection or ffmpeg.
"""

import asyncio
from pathlib import Path

import pytest

from src.bot.application.notification import NotificationService
from src.bot.domain.recording import SessionResult
from src.mixer.mixer import Mixer, MixerError, MixInput, MixJob
from src.recorder.session import RecordingSession
from src.voice.connection import (
    AudioPacket,
    ChannelInfo,
    LookupFailure,
    MemberInfo,
    VoiceConnection,
    WorkerClient,
)

pytest_plugins = ("pytest_asyncio",)

# 20ms of non-silent PCM (48kHz stereo 16-bit)
VOICE_FRAME = b"\x01\x00" * 1920


class FakeClock:
    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def set(self, now: float):
        self.now = now


class FakeConnection(VoiceConnection):
    def __init__(self, *, hang: bool = False):
        self.hang = hang
        self.queues: dict[int, asyncio.Queue] = {}
        self.listeners = []
        self.undecodable: set[bytes] = set()
        self.ended: set[int] = set()
        self.closed = False
        self.destroyed = 0

    async def wait_ready(self):
        await asyncio.sleep(0)
        if self.hang:
            await asyncio.Event().wait()

    def add_speaking_listener(self, listener):
        self.listeners.append(listener)

    def speak(self, speaker_id: int):
        for listener in list(self.listeners):
            listener(speaker_id)

    def _queue(self, speaker_id: int) -> asyncio.Queue:
        return self.queues.setdefault(speaker_id, asyncio.Queue())

    async def subscribe(self, speaker_id: int):
        queue = self._queue(speaker_id)
        while True:
            item = await queue.get()
            try:
                if item is None:
                    return
                yield item
            finally:
                queue.task_done()

    def push(self, speaker_id: int, payload: bytes = VOICE_FRAME):
        self._queue(speaker_id).put_nowait(AudioPacket(speaker_id, payload))

    async def drain(self, *speaker_ids: int):
        for speaker_id in speaker_ids:
            await asyncio.wait_for(self._queue(speaker_id).join(), timeout=5)

    def end_stream(self, speaker_id: int):
        self.ended.add(speaker_id)
        self._queue(speaker_id).put_nowait(None)

    def close_streams(self):
        self.closed = True
        for speaker_id, queue in self.queues.items():
            if speaker_id not in self.ended:
                queue.put_nowait(None)

    def decode(self, packet: AudioPacket) -> bytes:
        if packet.payload in self.undecodable:
            raise ValueError("corrupted packet")
        return packet.payload

    async def destroy(self):
        self.destroyed += 1


class FakeWorkerClient(WorkerClient):
    def __init__(self, user_id: int, channels: dict[int, ChannelInfo]):
        self._user_id = user_id
        self.channels = channels
        self.connections: list[FakeConnection] = []
        self.lookup_error = False
        self.hang = False

    @property
    def user_id(self) -> int | None:
        return self._user_id

    async def fetch_channel(self, channel_id: int) -> ChannelInfo | None:
        await asyncio.sleep(0)
        if self.lookup_error:
            raise LookupFailure("503 Service Unavailable")
        return self.channels.get(channel_id)

    def join(self, channel: ChannelInfo) -> FakeConnection:
        connection = FakeConnection(hang=self.hang)
        self.connections.append(connection)
        return connection


class FakeMixer(Mixer):
    """Records what it was asked to mix, including the raw file sizes."""

    def __init__(self, error: MixerError | None = None):
        self.error = error
        self.calls: list[tuple[str, MixJob, Path]] = []
        self.sizes: dict[int, int] = {}
        self.contents: dict[int, bytes] = {}

    def _convert_internal(self, source: MixInput, output_file: Path):
        self._record("convert", (source,), output_file)

    def _mix_internal(self, job: MixJob, output_file: Path):
        self._record("mix", job, output_file)

    def _record(self, kind: str, job: MixJob, output_file: Path):
        if self.error is not None:
            raise self.error
        for item in job:
            self.contents[item.speaker_id] = item.path.read_bytes()
            self.sizes[item.speaker_id] = len(self.contents[item.speaker_id])
        self.calls.append((kind, job, output_file))
        output_file.write_bytes(b"encoded")


class FakeNotificationService(NotificationService):
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.results: list[tuple[int, SessionResult]] = []

    async def send_recording_result(self, channel_id: int, result: SessionResult):
        if self.fail:
            raise RuntimeError("Missing Access")
        self.results.append((channel_id, result))

    async def send_disconnect_notification(self):
        pass

    async def send_resumed_notification(self):
        pass


def make_channel(
    channel_id: int = 100,
    name: str = "Room A",
    humans: tuple[int, ...] = (1, 2),
    bots: tuple[int, ...] = (),
) -> ChannelInfo:
    members = tuple(MemberInfo(m) for m in humans) + tuple(
        MemberInfo(b, bot=True) for b in bots
    )
    return ChannelInfo(id=channel_id, name=name, guild_id=10, members=members)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def mixer() -> FakeMixer:
    return FakeMixer()


@pytest.fixture
def notifications() -> FakeNotificationService:
    return FakeNotificationService()


@pytest.fixture
def recordings_dir(tmp_path: Path) -> Path:
    return tmp_path / "recordings"


@pytest.fixture
def make_session(clock, mixer, notifications, recordings_dir):
    def factory(
        channel: ChannelInfo | None = None,
        connection: FakeConnection | None = None,
        **kwargs,
    ) -> RecordingSession:
        kwargs.setdefault("min_track_bytes", 0)
        return RecordingSession(
            channel=channel or make_channel(),
            session_id=kwargs.pop("session_id", "1700000000000_100"),
            worker_index=kwargs.pop("worker_index", 0),
            connection=connection or FakeConnection(),
            mixer=mixer,
            notification_service=notifications,
            notify_channel_id=kwargs.pop("notify_channel_id", 555),
            root=recordings_dir,
            clock=clock,
            **kwargs,
        )

    return factory
