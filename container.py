import os
import shutil

from dependency_injector import containers, providers
from dotenv import load_dotenv

from src.mixer.ffmpeg import FFmpegMixer
from src.recorder.session import RecordingSession

load_dotenv()

_MAX_WORKERS = 3


class Container(containers.DeclarativeContainer):
    config = providers.Configuration()

    mixer = providers.Singleton(
        FFmpegMixer,
        ffmpeg_path=config.ffmpeg_path,
        gain=config.mix_gain,
        limit=config.mix_limit,
        bitrate=config.mix_bitrate,
    )
    session_factory = providers.Factory(
        RecordingSession,
        mixer=mixer,
        root=config.recordings_dir,
        audio_encoding=config.audio_encoding,
        gap_threshold_ms=config.gap_threshold_ms,
        flush_timeout=config.flush_timeout,
        min_track_bytes=config.min_track_bytes,
    )


def worker_tokens(config: dict | None = None) -> list[str]:
    """
    DISCORD_TOKEN_1..3 のうち設定されているものをワーカー番号順に返す。

    ミックスだけを行うCLIではトークンが不要なので、必須チェックはBotの起動時にここで行う。
    """
    if config is None:
        config = container.config()
    tokens = [config.get(f"discord_token_{i}") for i in range(1, _MAX_WORKERS + 1)]
    tokens = [t for t in tokens if t]
    if not tokens:
        raise ValueError("DISCORD_TOKEN_1 is not set")
    return tokens


container = Container()
container.config.discord_token_1.from_env("DISCORD_TOKEN_1", default="")
container.config.discord_token_2.from_env("DISCORD_TOKEN_2", default="")
container.config.discord_token_3.from_env("DISCORD_TOKEN_3", default="")
container.config.guild_id.from_env("GUILD_ID", default="")
container.config.system_channel_id.from_env("SYSTEM_CHANNEL_ID", default="")
container.config.log_level.from_env("LOG_LEVEL", default="INFO", as_=str)
container.config.recordings_dir.from_env("RECORDINGS_DIR", default="data/recordings")
container.config.ffmpeg_path.from_value(shutil.which(os.getenv("FFMPEG_PATH") or "ffmpeg"))
container.config.audio_encoding.from_env("AUDIO_ENCODING", default="mp3")
container.config.mix_bitrate.from_env("MIX_BITRATE", default="128k")
container.config.mix_gain.from_env("MIX_GAIN", default=2.0, as_=float)
container.config.mix_limit.from_env("MIX_LIMIT", default=0.95, as_=float)
container.config.connect_timeout.from_env("VOICE_CONNECT_TIMEOUT", default=20, as_=float)
container.config.auto_stop_delay.from_env("AUTO_STOP_DELAY", default=1.0, as_=float)
container.config.poll_interval.from_env("LIVENESS_POLL_INTERVAL", default=10, as_=float)
container.config.flush_timeout.from_env("FLUSH_TIMEOUT", default=10, as_=float)
container.config.gap_threshold_ms.from_env("GAP_THRESHOLD_MS", default=20, as_=float)
container.config.min_track_bytes.from_env("MIN_TRACK_BYTES", default=192_000, as_=int)
container.config.worker_preferences.from_env("WORKER_PREFERENCES", default="")
