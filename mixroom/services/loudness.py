import json
import math
import re
from pathlib import Path
from typing import Dict, Optional

from ..errors import AnalysisError, MixroomError, ProcessFailed, ProcessingCancelled
from ..models.records import AudioAnalysis
from . import ffmpeg

_NUM = r"(-?inf|-?\d+(?:\.\d+)?)"

# label -> (field, value pattern used on the label line or inside its block)
_SECTIONS = {
    "integrated loudness:": ("integrated_lufs", re.compile(r"(?:I:\s*)?" + _NUM + r"\s*LUFS")),
    "true peak:": ("true_peak_db", re.compile(r"(?:Peak:\s*)?" + _NUM + r"\s*dB(?:TP|FS)")),
    "loudness range:": ("loudness_range_lu", re.compile(r"(?:LRA:\s*)?" + _NUM + r"\s*LU\b")),
    "momentary max:": ("momentary_max_lufs", re.compile(_NUM + r"\s*LUFS")),
}
_BLOCK_KEY = {
    "integrated_lufs": re.compile(r"^\s*I:\s*" + _NUM + r"\s*LUFS"),
    "true_peak_db": re.compile(r"^\s*Peak:\s*" + _NUM + r"\s*dB(?:TP|FS)"),
    "loudness_range_lu": re.compile(r"^\s*LRA:\s*" + _NUM + r"\s*LU\b"),
}
_FRAME_M = re.compile(r"\bM:\s*" + _NUM)
_FRAME_LINE = re.compile(r"\bt:\s*\d")

REQUIRED = ("integrated_lufs", "true_peak_db", "loudness_range_lu")

_SAMPLE_FMT_BITS = {"u8": 8, "s16": 16, "s32": 32, "flt": 32, "dbl": 64, "s64": 64}


def _num(text: str) -> float:
    if text.endswith("inf"):
        return -math.inf if text.startswith("-") else math.inf
    return float(text)


def parse_ebur128(text: str) -> Dict[str, Optional[float]]:
    """Extract the summary fields from an ebur128 filter report.

    ffmpeg prints each label either with its value on the same line or as a
    header followed by indented ``I:``/``LRA:``/``Peak:`` lines.  Frame lines
    (``t: ... M: ...``) feed the momentary maximum when no explicit label is
    present.  Fields that are not found stay ``None``.
    """
    found: Dict[str, Optional[float]] = {
        "integrated_lufs": None,
        "true_peak_db": None,
        "loudness_range_lu": None,
        "momentary_max_lufs": None,
    }
    frame_max: Optional[float] = None
    section: Optional[str] = None

    for line in text.splitlines():
        if _FRAME_LINE.search(line):
            m = _FRAME_M.search(line)
            if m:
                value = _num(m.group(1))
                frame_max = value if frame_max is None else max(frame_max, value)
            continue

        lower = line.lower()
        label = next((k for k in _SECTIONS if k in lower), None)
        if label:
            key, pattern = _SECTIONS[label]
            section = key
            m = pattern.search(line[lower.index(label) + len(label):])
            if m:
                found[key] = _num(m.group(1))
            continue

        if section in _BLOCK_KEY and found[section] is None:
            m = _BLOCK_KEY[section].search(line)
            if m:
                found[section] = _num(m.group(1))

    if found["momentary_max_lufs"] is None:
        found["momentary_max_lufs"] = frame_max
    return found


def _bit_depth(stream: Dict) -> Optional[int]:
    for key in ("bits_per_sample", "bits_per_raw_sample"):
        try:
            bits = int(stream.get(key) or 0)
        except (TypeError, ValueError):
            bits = 0
        if bits:
            return bits
    fmt = (stream.get("sample_fmt") or "").rstrip("p")
    return _SAMPLE_FMT_BITS.get(fmt)


def parse_probe(data: Dict) -> Dict:
    """Pick the technical fields out of ``ffprobe -show_format -show_streams``."""
    stream = next((s for s in data.get("streams", []) if s.get("codec_type") == "audio"), None)
    if stream is None:
        raise AnalysisError("No audio stream found")
    duration = (data.get("format") or {}).get("duration") or stream.get("duration")
    try:
        return {
            "duration": float(duration),
            "sample_rate": int(stream["sample_rate"]),
            "bit_depth": _bit_depth(stream),
            "channel_count": int(stream["channels"]),
            "codec": stream.get("codec_name") or "unknown",
        }
    except (KeyError, TypeError, ValueError) as exc:
        raise AnalysisError(f"Incomplete stream metadata: {exc!r}")


def analyze(path: Path, timeout: Optional[float] = None, cancel=None) -> AudioAnalysis:
    """Technical metadata plus EBU R128 loudness for ``path``."""
    try:
        probe = parse_probe(ffmpeg.probe_json(path, timeout=timeout, cancel=cancel))
        report = ffmpeg.ebur128_scan(path, timeout=timeout, cancel=cancel)
    except ProcessingCancelled:
        raise
    except ProcessFailed as exc:
        raise AnalysisError(f"Analysis of {path} failed: {exc.message}", diagnostics=exc.diagnostics)
    except AnalysisError:
        raise
    except MixroomError as exc:
        raise AnalysisError(f"Analysis of {path} failed: {exc.message}", retryable=exc.retryable)
    except json.JSONDecodeError as exc:
        raise AnalysisError(f"Unreadable ffprobe output for {path}: {exc}")
    except OSError as exc:
        raise AnalysisError(f"Could not run analysis tools: {exc}")

    loudness = parse_ebur128(report)
    missing = [k for k in REQUIRED if loudness[k] is None]
    if missing:
        raise AnalysisError(
            f"Loudness report for {path} is missing {', '.join(missing)}",
            diagnostics=report[-400:],
        )
    return AudioAnalysis(**probe, **loudness)
