from collections.abc import Mapping
from typing import TYPE_CHECKING

import discord

from src.bot.domain.recording import SessionResult
from src.bot.domain.worker import Worker
from src.bot.enums import StopReason

if TYPE_CHECKING:
    from src.recorder.session import RecordingSession

_REASON_LABELS = {
    StopReason.MANUAL: "コマンドによる停止",
    StopReason.EMPTY_CHANNEL: "全員が退出したため自動停止",
    StopReason.CHANNEL_GONE: "チャンネルが削除されたため自動停止",
    StopReason.DISCONNECTED: "Botが切断されたため自動停止",
}


def create_recording_result_embed(result: SessionResult) -> discord.Embed:
    title = "⏹️ 録音終了"
    if result.reason is not StopReason.MANUAL:
        title = "⏹️ 録音終了 (Auto-Stopped)"

    if result.failed:
        embed = discord.Embed(
            title=title,
            description="音声のミックスに失敗しました。元の音声ファイルは保存されています。",
            color=discord.Color.red(),
        )
        if result.raw_dir is not None:
            embed.add_field(name="保存先", value=f"`{result.raw_dir}`", inline=False)
        embed.add_field(
            name="エラー", value=f"```{_truncate(result.error or '', 900)}```", inline=False
        )
    elif result.empty:
        embed = discord.Embed(
            title=title,
            description="会話が検出されませんでした。",
            color=discord.Color.orange(),
        )
    else:
        embed = discord.Embed(
            title=title,
            description=f"{result.track_count}人分の音声をミックスしました。",
            color=discord.Color.green(),
        )
        if result.output_path is not None:
            embed.add_field(name="ファイル", value=f"`{result.output_path.name}`", inline=False)

    embed.add_field(name="VC", value=result.channel_name)
    embed.add_field(name="録音時間", value=_format_duration(result.duration_ms))
    embed.add_field(name="理由", value=_REASON_LABELS[result.reason])
    embed.set_footer(text=f"Session ID: {result.session_id}")
    return embed


def create_status_embed(
    workers: list[Worker],
    sessions: Mapping[int, "RecordingSession"],
) -> discord.Embed:
    embed = discord.Embed(title="🎙️ 録音状況", color=discord.Color.blue())
    by_worker = {s.worker_index: s for s in sessions.values()}
    for worker in workers:
        session = by_worker.get(worker.index)
        if session is None:
            value = "待機中" if not worker.busy else "接続処理中"
        else:
            metrics = session.metrics()
            value = (
                f"{session.channel.name}\n"
                f"経過: {_format_duration(metrics.elapsed_ms)} / "
                f"話者: {metrics.speakers} / "
                f"データ量: {_human_bytes(metrics.bytes_total)}"
            )
        embed.add_field(name=worker.name, value=value, inline=False)
    return embed


def _format_duration(ms: float) -> str:
    seconds = max(0, int(ms // 1000))
    h, rem = divmod(seconds, 3600)
    m, s = divmod(rem, 60)
    if h:
        return f"{h}:{m:02d}:{s:02d}"
    return f"{m}:{s:02d}"


def _truncate(text: str, limit: int) -> str:
    return text if len(text) <= limit else text[: limit - 3] + "..."


def _human_bytes(n: int) -> str:
    s = float(n)
    for unit in ["B", "KB", "MB", "GB"]:
        if s < 1024.0:
            return f"{s:.1f}{unit}"
        s /= 1024.0
    return f"{s:.1f}TB"
