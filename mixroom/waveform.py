"""RMS amplitude envelopes for waveform display."""

from pathlib import Path
from typing import List, Sequence

import numpy as np
import soundfile as sf


def downsample(samples: Sequence[float], width: int) -> List[float]:
    """Reduce ``samples`` to ``width`` RMS values.

    The signal is cut into ``width`` contiguous buckets of
    ``len(samples) // width`` samples; the trailing remainder is dropped.
    With fewer samples than buckets every bucket is empty and reads as 0.
    """
    if width <= 0:
        raise ValueError("width must be positive")
    data = np.asarray(samples, dtype=np.float64).ravel()
    size = len(data) // width
    if size == 0:
        return [0.0] * width
    buckets = data[: size * width].reshape(width, size)
    return np.sqrt(np.mean(buckets ** 2, axis=1)).tolist()


def read_mono(path: Path) -> np.ndarray:
    data, _ = sf.read(str(path), dtype="float32", always_2d=True)
    return data.mean(axis=1)


def peaks_for_file(path: Path, width: int = 1000) -> List[float]:
    return downsample(read_mono(path), width)
