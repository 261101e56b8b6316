from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional


class VersionType(str, Enum):
    STEREO = "STEREO"
    ATMOS = "ATMOS"
    REFERENCE = "REFERENCE"
    BINAURAL = "BINAURAL"

    @classmethod
    def parse(cls, value: str) -> Optional["VersionType"]:
        try:
            return cls((value or "").strip().upper())
        except ValueError:
            return None


@dataclass(frozen=True)
class LoudnormSpec:
    name: str
    I: float
    TP: float
    LRA: float = 11.0
    sr: int = 48000
    bit_depth: int = 24

    def as_dict(self) -> Dict:
        return {
            "target_lufs": self.I,
            "max_true_peak": self.TP,
            "loudness_range": self.LRA,
            "sample_rate": self.sr,
            "bit_depth": self.bit_depth,
        }


stereo = LoudnormSpec("Stereo", I=-16.0, TP=-1.0)
binaural = LoudnormSpec("Binaural", I=-16.0, TP=-1.0)

# ATMOS and REFERENCE pass through untouched
TARGETS: Dict[VersionType, Optional[LoudnormSpec]] = {
    VersionType.STEREO: stereo,
    VersionType.BINAURAL: binaural,
    VersionType.ATMOS: None,
    VersionType.REFERENCE: None,
}

# achieved loudness further than this from the target is logged
LUFS_TOLERANCE = 0.5

AUDIO_EXTS = {".wav", ".mp3", ".flac", ".aiff", ".aif"}
ALLOWED_EXTS: Dict[VersionType, set] = {
    VersionType.STEREO: AUDIO_EXTS,
    VersionType.BINAURAL: AUDIO_EXTS,
    VersionType.REFERENCE: AUDIO_EXTS,
    VersionType.ATMOS: AUDIO_EXTS | {".bin"},
}

ALLOWED_MIMETYPES = {"application/octet-stream", "application/x-binary"}


def mimetype_allowed(mimetype: Optional[str]) -> bool:
    if not mimetype:
        return True
    return mimetype.startswith("audio/") or mimetype in ALLOWED_MIMETYPES


def target_for(version_type: VersionType) -> Optional[LoudnormSpec]:
    return TARGETS[version_type]
