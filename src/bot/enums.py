from enum import Enum


class SessionState(str, Enum):
    """録音セッションの状態。STOPPED は終端で、ACTIVE に戻ることはない"""

    STARTING = "starting"
    ACTIVE = "active"
    STOPPING = "stopping"
    STOPPED = "stopped"


class TrackState(str, Enum):
    """話者トラックの状態。ファイルは RECORDING に遷移した時点で作成される"""

    PENDING = "pending"
    RECORDING = "recording"
    CLOSED = "closed"


class StopReason(str, Enum):
    """録音停止の理由"""

    MANUAL = "manual"
    EMPTY_CHANNEL = "empty_channel"
    CHANNEL_GONE = "channel_gone"
    DISCONNECTED = "disconnected"
