"""
PCMフォーマット定数とバイト数計算のユーティリティ。

Discordから受信する音声は 48kHz / ステレオ / 16bit signed little-endian に固定されている。
"""

SAMPLE_RATE = 48000
CHANNELS = 2
SAMPLE_WIDTH = 2

# 1サンプルフレーム（全チャンネル分の1サンプル）のバイト数
FRAME_SIZE = CHANNELS * SAMPLE_WIDTH
BYTES_PER_MS = SAMPLE_RATE * FRAME_SIZE // 1000


def ms_to_bytes(ms: float) -> int:
    """ミリ秒をバイト数に変換する。結果はフレーム境界に切り捨てる。"""
    if ms <= 0:
        return 0
    n = int(ms * BYTES_PER_MS)
    return n - n % FRAME_SIZE


def bytes_to_ms(num_bytes: int) -> float:
    return num_bytes / BYTES_PER_MS


def silence(num_bytes: int) -> bytes:
    return bytes(num_bytes - num_bytes % FRAME_SIZE)


def gap_fill_size(elapsed_ms: float, written_bytes: int, threshold_ms: float) -> int:
    """
    経過時間に対してトラックが遅れている分の無音バイト数を返す。

    遅れが threshold_ms 以下なら 0。
    """
    gap_ms = elapsed_ms - bytes_to_ms(written_bytes)
    if gap_ms <= threshold_ms:
        return 0
    return ms_to_bytes(gap_ms)


def tail_pad_size(target_bytes: int, written_bytes: int) -> int:
    # 1フレーム以内の不足は丸め誤差として扱う
    shortfall = target_bytes - written_bytes
    if shortfall <= FRAME_SIZE:
        return 0
    return shortfall - shortfall % FRAME_SIZE
