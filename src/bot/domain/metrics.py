from dataclasses import dataclass

from ..enums import SessionState


@dataclass
class RecordingMetrics:
    speakers: int
    open_tracks: int
    bytes_total: int
    elapsed_ms: float
    since_last_packet: float | None
    state: SessionState
