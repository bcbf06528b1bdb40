import asyncio
import time
from collections.abc import Callable
from logging import getLogger
from pathlib import Path

from src.bot.application.notification import NotificationService
from src.bot.domain.metrics import RecordingMetrics
from src.bot.domain.recording import SessionResult
from src.bot.enums import SessionState, StopReason, TrackState
from src.mixer.mixer import Mixer, MixerError, MixInput, MixJob
from src.voice.connection import AudioPacket, ChannelInfo, VoiceConnection

from .path_builder import create_path_builder
from .pcm import FRAME_SIZE, gap_fill_size, ms_to_bytes, silence, tail_pad_size
from .track import SpeakerTrack

logger = getLogger(__name__)


class RecordingSession:
    """
    1つのボイスチャンネルの録音を管理するクラス。

    話者ごとにキャプチャタスクを起動し、セッション開始からの経過時間に合わせて
    無音を挿入しながらPCMファイルへ書き出す。すべてのファイルはセッション開始時刻を
    原点とするため、ミックス時に話者ごとのオフセットを指定する必要はない。
    """

    def __init__(
        self,
        *,
        channel: ChannelInfo,
        session_id: str,
        worker_index: int,
        connection: VoiceConnection,
        mixer: Mixer,
        notification_service: NotificationService | None = None,
        notify_channel_id: int | None = None,
        root: Path | str = Path("data/recordings"),
        audio_encoding: str = "mp3",
        clock: Callable[[], float] = time.monotonic,
        gap_threshold_ms: float = 20.0,
        flush_timeout: float = 10.0,
        min_track_bytes: int = 192_000,
    ):
        self.channel = channel
        self.session_id = session_id
        self.worker_index = worker_index
        self.connection = connection
        self.mixer = mixer
        self.notification_service = notification_service
        self.notify_channel_id = notify_channel_id
        self.paths = create_path_builder(Path(root), channel.name, session_id, audio_encoding)
        self.gap_threshold_ms = gap_threshold_ms
        self.flush_timeout = flush_timeout
        self.min_track_bytes = min_track_bytes

        self.state = SessionState.STARTING
        self.started_at: float | None = None
        self.duration_ms: float | None = None
        self.tracks: dict[int, SpeakerTrack] = {}

        self._clock = clock
        self._pipelines: dict[int, asyncio.Task] = {}
        self._recorded: list[SpeakerTrack] = []
        self._last_packet: float | None = None

    @property
    def channel_id(self) -> int:
        return self.channel.id

    def elapsed_ms(self) -> float:
        if self.started_at is None:
            return 0.0
        elapsed = (self._clock() - self.started_at) * 1000
        # 停止後に届いたパケットで停止時刻より先まで無音を埋めないようにする
        if self.duration_ms is not None:
            return min(elapsed, self.duration_ms)
        return elapsed

    def start(self):
        if self.state is not SessionState.STARTING:
            raise RuntimeError(f"Session {self.session_id} is {self.state.value}")

        self.paths.ensure_dir()
        self.started_at = self._clock()
        self.state = SessionState.ACTIVE
        logger.info(
            f"Starting recording in {self.channel.name} ({self.channel.id}) "
            f"for guild {self.channel.guild_id} as session {self.session_id}"
        )

        self.connection.add_speaking_listener(self._on_speaking)
        # 既に話している参加者はspeakingイベントが来ない場合があるので先に購読しておく
        for member in self.channel.humans:
            self.capture(member.id)

    def _on_speaking(self, speaker_id: int):
        if self.capture(speaker_id):
            logger.info(f"Speaker {speaker_id} started speaking in {self.channel.name}")

    def capture(self, speaker_id: int) -> bool:
        """話者のキャプチャを開始する。話者ごとに一度だけ起動する"""
        if self.state is not SessionState.ACTIVE or speaker_id in self._pipelines:
            return False

        track = SpeakerTrack(speaker_id, self.paths.speaker_raw(speaker_id))
        self.tracks[speaker_id] = track
        self._pipelines[speaker_id] = asyncio.create_task(
            self._run_pipeline(track), name=f"capture-{self.session_id}-{speaker_id}"
        )
        return True

    def end_speaker(self, speaker_id: int):
        """話者がチャンネルを離れたときにその話者のストリームを終了する"""
        if self.state is SessionState.ACTIVE and speaker_id in self.tracks:
            logger.info(f"Speaker {speaker_id} left {self.channel.name}")
            self.connection.end_stream(speaker_id)

    async def _run_pipeline(self, track: SpeakerTrack):
        try:
            async for packet in self.connection.subscribe(track.speaker_id):
                if not packet.payload:
                    continue
                await self._write_packet(track, packet)
        except Exception:
            logger.exception(f"Capture pipeline for speaker {track.speaker_id} failed")
        finally:
            # 停止処理中のトラックは末尾の無音を足してから閉じるので、ここでは触らない
            if self.state is SessionState.ACTIVE:
                self.tracks.pop(track.speaker_id, None)
                await asyncio.to_thread(track.close)
                logger.info(f"Pipeline ended for speaker {track.speaker_id}")

    async def _write_packet(self, track: SpeakerTrack, packet: AudioPacket):
        elapsed_ms = self.elapsed_ms()
        self._last_packet = self._clock()

        if track.state is TrackState.PENDING:
            await asyncio.to_thread(track.open, elapsed_ms)
            self._recorded.append(track)

        try:
            pcm = self.connection.decode(packet)
        except Exception as e:
            logger.warning(f"Dropping undecodable packet for speaker {track.speaker_id}: {e}")
            return
        pcm = pcm[: len(pcm) - len(pcm) % FRAME_SIZE]

        pad = gap_fill_size(elapsed_ms, track.written_bytes, self.gap_threshold_ms)
        if pad:
            logger.debug(f"Filling {pad} bytes of silence for speaker {track.speaker_id}")
        await asyncio.to_thread(track.write, silence(pad) + pcm)

    async def stop(self, reason: StopReason = StopReason.MANUAL) -> SessionResult:
        """
        録音を終了し、ミックスと通知まで行う。

        呼び出しは一度だけであることをスケジューラ側が保証する。
        """
        if self.state is not SessionState.ACTIVE:
            raise RuntimeError(f"Session {self.session_id} is {self.state.value}")

        self.state = SessionState.STOPPING
        duration_ms = self.duration_ms = self.elapsed_ms()
        logger.info(
            f"Stopping session {self.session_id} in {self.channel.name} "
            f"after {duration_ms / 1000:.1f}s ({reason.value})"
        )

        try:
            try:
                await self._flush(ms_to_bytes(duration_ms))
            finally:
                await self._release_connection()

            job = await asyncio.to_thread(self._collect_mix_job)
            result = await self._mix(job, reason, duration_ms)
        finally:
            self.state = SessionState.STOPPED

        await self._notify(result)
        return result

    async def _flush(self, target_bytes: int):
        self.connection.close_streams()

        pending = [task for task in self._pipelines.values() if not task.done()]
        if pending:
            _, pending = await asyncio.wait(pending, timeout=self.flush_timeout)
        if pending:
            logger.warning(
                f"{len(pending)} capture pipelines did not finish within "
                f"{self.flush_timeout}s. Cancelling..."
            )
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)

        for track in list(self.tracks.values()):
            if track.recording:
                pad = tail_pad_size(target_bytes, track.written_bytes)
                if pad:
                    logger.debug(f"Padding {pad} bytes of tail silence for speaker {track.speaker_id}")
                    await asyncio.to_thread(track.write, silence(pad))
            await asyncio.to_thread(track.close)
        self.tracks.clear()

    async def _release_connection(self):
        try:
            await self.connection.destroy()
        except Exception:
            logger.exception(f"Failed to release voice connection for session {self.session_id}")

    def _collect_mix_job(self) -> MixJob:
        inputs: list[MixInput] = []
        for track in self._recorded:
            size = track.path.stat().st_size if track.path.exists() else 0
            if size < self.min_track_bytes:
                logger.info(
                    f"Discarding spurious track for speaker {track.speaker_id} ({size} bytes)"
                )
                track.path.unlink(missing_ok=True)
                continue
            inputs.append(MixInput(track.path, track.speaker_id))
        return tuple(inputs)

    async def _mix(
        self, job: MixJob, reason: StopReason, duration_ms: float
    ) -> SessionResult:
        def result(**kwargs) -> SessionResult:
            return SessionResult(
                session_id=self.session_id,
                channel_name=self.channel.name,
                reason=reason,
                duration_ms=duration_ms,
                track_count=len(job),
                **kwargs,
            )

        if not job:
            logger.info(f"No conversation detected in session {self.session_id}")
            self.paths.remove_dir_if_empty()
            return result()

        output = self.paths.mixed_audio()
        try:
            await asyncio.to_thread(self.mixer.mix, job, output)
        except MixerError as e:
            # 再実行や手動復旧のため生のPCMファイルは残しておく
            logger.error(f"Mixing failed for session {self.session_id}: {e}")
            return result(raw_dir=self.paths.dir, error=str(e))

        await asyncio.to_thread(self._remove_raw_files, job)
        logger.info(f"Saved mixed recording to {output}")
        return result(output_path=output)

    def _remove_raw_files(self, job: MixJob):
        for item in job:
            try:
                item.path.unlink(missing_ok=True)
            except OSError as e:
                logger.error(f"Error deleting raw file {item.path}: {e}")
        self.paths.remove_dir_if_empty()

    async def _notify(self, result: SessionResult):
        if self.notification_service is None or self.notify_channel_id is None:
            return
        try:
            await self.notification_service.send_recording_result(
                self.notify_channel_id, result
            )
        except Exception:
            logger.exception(f"Failed to send completion notice for session {self.session_id}")

    def metrics(self) -> RecordingMetrics:
        since = None
        if self._last_packet is not None:
            since = self._clock() - self._last_packet
        return RecordingMetrics(
            speakers=len(self._pipelines),
            open_tracks=sum(1 for t in self.tracks.values() if t.recording),
            bytes_total=sum(t.written_bytes for t in self._recorded),
            elapsed_ms=self.elapsed_ms(),
            since_last_packet=since,
            state=self.state,
        )
