import json
from dataclasses import asdict, dataclass, field
from typing import Dict, List, Optional

from .specs import VersionType


@dataclass
class AudioAnalysis:
    duration: float
    sample_rate: int
    bit_depth: Optional[int]
    channel_count: int
    codec: str
    integrated_lufs: float
    true_peak_db: float
    loudness_range_lu: float
    momentary_max_lufs: Optional[float] = None


@dataclass
class NormalizationResult:
    normalized_path: str
    is_normalized: bool
    lufs_level: Optional[float]
    analysis: Optional[AudioAnalysis] = None
    output_analysis: Optional[AudioAnalysis] = None
    settings_applied: Optional[Dict] = None


@dataclass
class AudioVersion:
    id: str
    track_id: str
    version_type: VersionType
    version_number: int
    file_name: str
    file_path: str
    file_size: int
    is_normalized: bool
    lufs_level: Optional[float]
    is_active: bool
    created_at: str
    waveform_data: Optional[List[float]] = field(default=None, repr=False)

    @classmethod
    def from_row(cls, row) -> "AudioVersion":
        waveform = row["waveform_data"]
        return cls(
            id=row["id"],
            track_id=row["track_id"],
            version_type=VersionType(row["version_type"]),
            version_number=row["version_number"],
            file_name=row["file_name"],
            file_path=row["file_path"],
            file_size=row["file_size"],
            is_normalized=bool(row["is_normalized"]),
            lufs_level=row["lufs_level"],
            is_active=bool(row["is_active"]),
            created_at=row["created_at"],
            waveform_data=json.loads(waveform) if waveform else None,
        )

    def to_dict(self, include_waveform: bool = False) -> Dict:
        data = asdict(self)
        data["version_type"] = self.version_type.value
        if not include_waveform:
            data.pop("waveform_data")
        return data


@dataclass
class Track:
    id: str
    project_id: str
    name: str
    owner_id: str
