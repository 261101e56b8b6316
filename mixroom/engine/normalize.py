"""Loudness normalisation engine.

STEREO and BINAURAL mixes are rendered through ffmpeg's ``loudnorm`` filter
to a 48 kHz / 24-bit WAV and re-measured so the *achieved* loudness can be
stored.  ATMOS containers are moved untouched and REFERENCE mixes are copied
byte for byte.  Every output is written next to its destination as
``<name>.part`` and only moved into place once complete, so a reader never
sees a half-written file.

Callers only rely on ``analyze(path)`` and ``normalize(...)``; any object
providing both can stand in for ``FfmpegNormalizer``.
"""

from __future__ import annotations

import errno
import logging
import os
import shutil
import threading
from pathlib import Path
from typing import Optional

from ..errors import (
    AnalysisError,
    MixroomError,
    NormalizationError,
    ProcessFailed,
    ProcessingCancelled,
)
from ..models import specs
from ..models.records import AudioAnalysis, NormalizationResult
from ..models.specs import VersionType
from ..services import ffmpeg, loudness

log = logging.getLogger(__name__)


def part_path(out_path: Path) -> Path:
    return out_path.with_name(out_path.name + ".part")


def _check_cancel(cancel: Optional[threading.Event]) -> None:
    if cancel is not None and cancel.is_set():
        raise ProcessingCancelled("processing cancelled")


class FfmpegNormalizer:
    def __init__(self, timeout: float = 600.0):
        self.timeout = timeout

    def analyze(self, path, cancel: Optional[threading.Event] = None) -> AudioAnalysis:
        return loudness.analyze(Path(path), timeout=self.timeout, cancel=cancel)

    def normalize(
        self,
        input_path,
        output_path,
        version_type: VersionType,
        cancel: Optional[threading.Event] = None,
    ) -> NormalizationResult:
        input_path, output_path = Path(input_path), Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        _check_cancel(cancel)

        if version_type is VersionType.ATMOS:
            move_preserving(input_path, output_path)
            return NormalizationResult(normalized_path=str(output_path), is_normalized=False, lufs_level=None)

        analysis = self.analyze(input_path, cancel)
        spec = specs.target_for(version_type)
        if spec is None:
            copy_preserving(input_path, output_path)
            return NormalizationResult(
                normalized_path=str(output_path),
                is_normalized=False,
                lufs_level=analysis.integrated_lufs,
                analysis=analysis,
            )

        achieved = self._render(input_path, output_path, spec, cancel)
        drift = abs(achieved.integrated_lufs - spec.I)
        if drift > specs.LUFS_TOLERANCE:
            log.warning(
                "%s normalized to %.2f LUFS, %.2f LU away from %.1f target",
                output_path.name, achieved.integrated_lufs, drift, spec.I,
            )
        return NormalizationResult(
            normalized_path=str(output_path),
            is_normalized=True,
            lufs_level=achieved.integrated_lufs,
            analysis=analysis,
            output_analysis=achieved,
            settings_applied=spec.as_dict(),
        )

    def _render(self, in_path: Path, out_path: Path, spec: specs.LoudnormSpec, cancel) -> AudioAnalysis:
        part = part_path(out_path)
        try:
            ffmpeg.loudnorm_render(in_path, spec, part, timeout=self.timeout, cancel=cancel)
            if not part.exists() or part.stat().st_size == 0:
                raise NormalizationError("ffmpeg produced no output")
            achieved = self.analyze(part, cancel)
            os.replace(part, out_path)
            return achieved
        except (ProcessingCancelled, NormalizationError):
            raise
        except ProcessFailed as exc:
            raise NormalizationError(f"loudnorm render of {in_path.name} failed", diagnostics=exc.diagnostics)
        except AnalysisError as exc:
            raise NormalizationError(
                f"normalized output could not be verified: {exc.message}",
                diagnostics=exc.diagnostics,
                retryable=exc.retryable,
            )
        except MixroomError as exc:
            raise NormalizationError(exc.message, retryable=exc.retryable)
        except OSError as exc:
            raise NormalizationError(f"could not write {out_path.name}: {exc}")
        finally:
            part.unlink(missing_ok=True)


def copy_preserving(src: Path, dst: Path) -> None:
    """Byte-identical copy of ``src`` to ``dst`` via a ``.part`` file."""
    part = part_path(dst)
    try:
        shutil.copyfile(src, part)
        os.replace(part, dst)
    except OSError as exc:
        raise NormalizationError(f"could not copy {src.name}: {exc}")
    finally:
        part.unlink(missing_ok=True)


def move_preserving(src: Path, dst: Path) -> None:
    """Move ``src`` to ``dst`` without touching its bytes."""
    try:
        os.replace(src, dst)
        return
    except OSError as exc:
        if exc.errno != errno.EXDEV:
            raise NormalizationError(f"could not move {src.name}: {exc}")
    copy_preserving(src, dst)
    src.unlink(missing_ok=True)
