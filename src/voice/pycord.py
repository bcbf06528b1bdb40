import asyncio
from collections.abc import AsyncIterator
from logging import getLogger
from typing import cast

import discord

from src.recorder.pcm import FRAME_SIZE

from .connection import (
    AudioPacket,
    ChannelInfo,
    LookupFailure,
    MemberInfo,
    SpeakingListener,
    VoiceConnection,
    WorkerClient,
)
from .sink import DemultiplexSink

logger = getLogger(__name__)

# Discordの音声は20ms (960サンプル) 単位でデコードされる
DECODED_FRAME_BYTES = 960 * FRAME_SIZE

VoiceChannelLike = discord.VoiceChannel | discord.StageChannel


def channel_info(channel: VoiceChannelLike) -> ChannelInfo:
    return ChannelInfo(
        id=channel.id,
        name=channel.name,
        guild_id=channel.guild.id,
        members=tuple(MemberInfo(m.id, m.bot) for m in channel.members),
    )


class PycordVoiceConnection(VoiceConnection):
    def __init__(self, bot: discord.Bot, channel_id: int):
        self.bot = bot
        self.channel_id = channel_id
        self.sink = DemultiplexSink(loop=asyncio.get_running_loop())
        self.voice_client: discord.VoiceClient | None = None

    async def _channel(self) -> VoiceChannelLike:
        channel = self.bot.get_channel(self.channel_id)
        if channel is None:
            channel = await self.bot.fetch_channel(self.channel_id)
        if not isinstance(channel, VoiceChannelLike):
            raise LookupFailure(f"Channel {self.channel_id} is not a voice channel")
        return channel

    async def wait_ready(self) -> None:
        channel = await self._channel()
        vc = cast(discord.VoiceClient, await channel.connect())
        self.voice_client = vc
        vc.start_recording(self.sink, self._on_recording_finished)
        logger.info(f"Connected to {channel.name} and started receiving audio")

    async def _on_recording_finished(self, sink: DemultiplexSink):
        logger.debug(f"Recording finished for channel {self.channel_id}")

    def add_speaking_listener(self, listener: SpeakingListener) -> None:
        self.sink.add_speaking_listener(listener)

    def subscribe(self, speaker_id: int) -> AsyncIterator[AudioPacket]:
        return self.sink.stream(speaker_id)

    def end_stream(self, speaker_id: int) -> None:
        self.sink.end_stream(speaker_id)

    def close_streams(self) -> None:
        self.sink.close()

    def decode(self, packet: AudioPacket) -> bytes:
        """
        py-cordは話者自身の無音区間をゼロサンプルとしてフレームの前に付けて渡してくる。
        無音の補完は録音セッション側で経過時間から行うので、末尾のフレームだけを使う。
        """
        payload = packet.payload
        if len(payload) > DECODED_FRAME_BYTES:
            return payload[-DECODED_FRAME_BYTES:]
        return payload

    async def destroy(self) -> None:
        self.sink.close()
        vc = self.voice_client
        if vc is None:
            # 接続待ちの途中で打ち切られた場合はギルド側に残っている接続を探す
            channel = self.bot.get_channel(self.channel_id)
            if isinstance(channel, VoiceChannelLike):
                vc = cast(discord.VoiceClient | None, channel.guild.voice_client)
        if vc is None:
            return
        if vc.recording:
            vc.stop_recording()
        await vc.disconnect(force=True)
        self.voice_client = None


class PycordWorkerClient(WorkerClient):
    def __init__(self, bot: discord.Bot):
        self.bot = bot

    @property
    def user_id(self) -> int | None:
        return self.bot.user.id if self.bot.user else None

    async def fetch_channel(self, channel_id: int) -> ChannelInfo | None:
        channel = self.bot.get_channel(channel_id)
        if channel is None:
            try:
                channel = await self.bot.fetch_channel(channel_id)
            except discord.NotFound:
                return None
            except discord.HTTPException as e:
                raise LookupFailure(f"Failed to fetch channel {channel_id}: {e}") from e
        if not isinstance(channel, VoiceChannelLike):
            return None
        return channel_info(channel)

    def join(self, channel: ChannelInfo) -> VoiceConnection:
        return PycordVoiceConnection(self.bot, channel.id)
