from abc import ABC, abstractmethod
from datetime import datetime, timezone
from logging import getLogger

import discord

from src.ui.embeds import create_recording_result_embed

from ..domain.recording import SessionResult

logger = getLogger(__name__)


class NotificationService(ABC):
    @abstractmethod
    async def send_recording_result(self, channel_id: int, result: SessionResult):
        pass

    @abstractmethod
    async def send_disconnect_notification(self):
        pass

    @abstractmethod
    async def send_resumed_notification(self):
        pass


class DiscordNotificationService(NotificationService):
    def __init__(self, bot: discord.Bot, system_channel_id: int | None = None):
        self.bot = bot
        self.system_channel_id = system_channel_id

    @property
    def _bot_name(self) -> str:
        if self.bot.user:
            return f"<@{self.bot.user.id}>"
        return "Unknown Bot"

    async def send_recording_result(self, channel_id: int, result: SessionResult):
        channel = await self._messageable(channel_id)
        await channel.send(embed=create_recording_result_embed(result))

    async def send_disconnect_notification(self):
        await self._send_system(
            f"{self._bot_name} が切断されました。再接続を試みています。",
            color=discord.Color.orange(),
        )

    async def send_resumed_notification(self):
        await self._send_system(
            f"{self._bot_name} が再接続されました。",
            color=discord.Color.blue(),
        )

    async def _messageable(self, channel_id: int) -> discord.abc.Messageable:
        channel = self.bot.get_channel(channel_id)
        if channel is None:
            channel = await self.bot.fetch_channel(channel_id)
        if isinstance(channel, discord.abc.Messageable):
            return channel
        raise ValueError(f"Channel {channel_id} is not messageable")

    async def _send_system(self, message: str, color: discord.Color):
        if self.system_channel_id is None:
            return
        embed = discord.Embed(
            title="recorder: system notification",
            description=message,
            color=color,
            timestamp=datetime.now(timezone.utc),
        )
        embed.add_field(name="Guilds", value=str(len(self.bot.guilds)))
        try:
            channel = await self._messageable(self.system_channel_id)
            await channel.send(embed=embed)
        except discord.DiscordException as e:
            logger.error(f"Failed to send system notification: {e}")
