from dataclasses import dataclass
from pathlib import Path

from ..enums import StopReason


@dataclass(frozen=True)
class SessionResult:
    """停止処理の結果。通知の内容に使われる"""

    session_id: str
    channel_name: str
    reason: StopReason
    duration_ms: float
    track_count: int
    output_path: Path | None = None
    raw_dir: Path | None = None
    error: str | None = None

    @property
    def empty(self) -> bool:
        return self.track_count == 0

    @property
    def failed(self) -> bool:
        return self.error is not None
