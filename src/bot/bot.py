import asyncio
from functools import partial
from logging import getLogger
from typing import cast

import discord

from container import container, worker_tokens
from src.ui.embeds import create_status_embed
from src.voice.pycord import PycordWorkerClient, channel_info

from .application.notification import DiscordNotificationService
from .application.scheduler import (
    AlreadyRecordingError,
    ConnectionTimeoutError,
    NoAvailableWorkerError,
    WorkerPoolScheduler,
    parse_worker_preferences,
)
from .domain.worker import Worker

logger = getLogger(__name__)


def _optional_id(value: str | None) -> int | None:
    return int(value) if value and value.isdigit() else None


def _create_bot() -> discord.Bot:
    intents = discord.Intents.default()
    intents.voice_states = True
    guild_id = _optional_id(container.config.guild_id())
    return discord.Bot(
        intents=intents,
        debug_guilds=[guild_id] if guild_id is not None else None,
    )


# Bots: 0番目がスラッシュコマンドを受け付けるメインBot
tokens = worker_tokens()
bots = [_create_bot() for _ in tokens]
bot = bots[0]

# Services
workers = [Worker(index=i, client=PycordWorkerClient(b)) for i, b in enumerate(bots)]
notification_service = DiscordNotificationService(
    bot, _optional_id(container.config.system_channel_id())
)
scheduler = WorkerPoolScheduler(
    workers,
    partial(container.session_factory, notification_service=notification_service),
    preferences=parse_worker_preferences(container.config.worker_preferences()),
    connect_timeout=container.config.connect_timeout(),
    auto_stop_delay=container.config.auto_stop_delay(),
    poll_interval=container.config.poll_interval(),
)


record = discord.SlashCommandGroup("record", "ボイスチャンネルの録音を操作します")


@record.command(
    description="録音を開始します。ボイスチャンネルに参加してから実行してください。"
)
async def start(ctx: discord.ApplicationContext):
    await ctx.defer()
    member = cast(discord.Member, ctx.author)
    voice = member.voice

    if voice is None or voice.channel is None:
        await ctx.followup.send("ボイスチャンネルに参加してください。")
        return

    channel = voice.channel
    try:
        session_id = await scheduler.start(channel_info(channel), ctx.channel_id)
    except AlreadyRecordingError:
        await ctx.followup.send("このチャンネルはすでに録音中です。")
        return
    except NoAvailableWorkerError:
        await ctx.followup.send(
            f"利用可能なBotがありません。（同時録音は最大{len(workers)}件まで）"
        )
        return
    except ConnectionTimeoutError:
        await ctx.followup.send(
            f"ボイス接続がタイムアウトしました（{scheduler.connect_timeout:.0f}s）。もう一度お試しください。"
        )
        return
    except discord.Forbidden:
        await ctx.followup.send("ボイスチャンネルへの接続権限がありません。")
        return
    except discord.HTTPException:
        await ctx.followup.send(
            "Discord API エラーにより接続に失敗しました。少し待って再試行してください。"
        )
        return
    except discord.ClientException as e:
        logger.error(f"Failed to join {channel.name}: {e}")
        await ctx.followup.send(f"録音を開始できませんでした: {e}")
        return

    await ctx.followup.send(f"録音を開始しました。Session ID: `{session_id}`")


@record.command(description="録音を停止します")
async def stop(ctx: discord.ApplicationContext):
    await ctx.defer()
    member = cast(discord.Member, ctx.author)
    voice = member.voice

    if voice is None or voice.channel is None:
        await ctx.followup.send("録音中のボイスチャンネルに参加してから実行してください。")
        return

    channel_id = voice.channel.id
    if scheduler.session_for(channel_id) is None:
        await ctx.followup.send("このチャンネルでは録音が開始されていません。")
        return

    # 保存処理に時間がかかるので先に応答しておく
    await ctx.followup.send("録音を停止しています...")
    await scheduler.stop(channel_id)


@record.command(description="各Botの録音状況を表示します")
async def status(ctx: discord.ApplicationContext):
    await ctx.respond(embed=create_status_embed(workers, scheduler.sessions))


bot.add_application_command(record)


@bot.event
async def on_ready():
    logger.info(f"Main bot logged in as {bot.user}")
    scheduler.start_polling()


@bot.event
async def on_disconnect():
    await notification_service.send_disconnect_notification()


@bot.event
async def on_resumed():
    await notification_service.send_resumed_notification()


# ワーカーBotもすべて同じギルドにいるため、ボイス状態の変化はメインBotだけで受け取り、
# 参加者数もイベントを処理済みのメインBotのキャッシュから数える
@bot.event
async def on_voice_state_update(
    member: discord.Member,
    before: discord.VoiceState,
    after: discord.VoiceState,
):
    await scheduler.handle_voice_state_update(
        member.id,
        before.channel.id if before.channel is not None else None,
        after.channel.id if after.channel is not None else None,
        source=workers[0].client,
    )


def _register_listeners():
    for worker, b in zip(workers, bots):

        async def on_worker_ready(worker: Worker = worker, b: discord.Bot = b):
            logger.info(f"{worker.name} logged in as {b.user}")

        b.add_listener(on_worker_ready, "on_ready")


_register_listeners()


async def _start_all():
    await asyncio.gather(*(b.start(token) for b, token in zip(bots, tokens)))


async def _close_all():
    for b in bots:
        if not b.is_closed():
            await b.close()


def run():
    loop = bot.loop
    try:
        loop.run_until_complete(_start_all())
    except KeyboardInterrupt:
        logger.info("Shutting down...")
    finally:
        loop.run_until_complete(_close_all())
