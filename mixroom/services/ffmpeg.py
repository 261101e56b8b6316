import json
import os
import shutil
import signal
import subprocess
import threading
import time
from pathlib import Path
from typing import Dict, List, Optional

from ..errors import ProcessFailed, ProcessingCancelled, ProcessTimeout
from ..models import specs

POLL_INTERVAL = 0.25


def _kill(proc: subprocess.Popen) -> None:
    try:
        if hasattr(os, "killpg"):
            os.killpg(proc.pid, signal.SIGKILL)
        else:
            proc.kill()
    except ProcessLookupError:
        pass
    proc.communicate()


def run(
    cmd: List[str],
    timeout: Optional[float] = None,
    cancel: Optional[threading.Event] = None,
    check: bool = False,
) -> subprocess.CompletedProcess:
    """Run ``cmd`` capturing text output.

    The child gets its own process group so a timeout or a set ``cancel``
    event kills ffmpeg together with anything it spawned.  Raises
    ``ProcessTimeout`` / ``ProcessingCancelled`` in those cases and
    ``ProcessFailed`` on non-zero exit when ``check`` is true.
    """
    proc = subprocess.Popen(
        cmd,
        stdin=subprocess.DEVNULL,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        text=True,
        errors="replace",
        start_new_session=True,
    )
    deadline = time.monotonic() + timeout if timeout else None
    while True:
        try:
            out, err = proc.communicate(timeout=POLL_INTERVAL)
            break
        except subprocess.TimeoutExpired:
            if cancel is not None and cancel.is_set():
                _kill(proc)
                raise ProcessingCancelled(f"{cmd[0]} cancelled")
            if deadline is not None and time.monotonic() >= deadline:
                _kill(proc)
                raise ProcessTimeout(cmd, timeout)
    if check and proc.returncode != 0:
        raise ProcessFailed(cmd, proc.returncode, err)
    return subprocess.CompletedProcess(cmd, proc.returncode, out, err)


def tool_available(tool: str) -> bool:
    return shutil.which(tool) is not None


def probe_json(path: Path, timeout: Optional[float] = None, cancel=None) -> Dict:
    """Container and stream metadata from ``ffprobe`` as a dict."""
    proc = run(
        [
            "ffprobe",
            "-v",
            "error",
            "-print_format",
            "json",
            "-show_format",
            "-show_streams",
            str(path),
        ],
        timeout=timeout,
        cancel=cancel,
        check=True,
    )
    return json.loads(proc.stdout or "{}")


def ebur128_scan(path: Path, timeout: Optional[float] = None, cancel=None) -> str:
    """Run the EBU R128 meter over ``path`` and return its stderr report."""
    proc = run(
        [
            "ffmpeg",
            "-nostdin",
            "-nostats",
            "-hide_banner",
            "-i",
            str(path),
            "-filter:a",
            "ebur128=peak=true:framelog=info",
            "-f",
            "null",
            "-",
        ],
        timeout=timeout,
        cancel=cancel,
        check=True,
    )
    return proc.stderr


def loudnorm_render(
    in_path: Path,
    spec: specs.LoudnormSpec,
    out_path: Path,
    timeout: Optional[float] = None,
    cancel=None,
) -> subprocess.CompletedProcess:
    """Single-pass loudnorm to ``spec`` written as 24-bit WAV at ``spec.sr``."""
    filt = f"loudnorm=I={spec.I}:TP={spec.TP}:LRA={spec.LRA}:print_format=json"
    codec = "pcm_s24le" if spec.bit_depth == 24 else "pcm_s16le"
    cmd = [
        "ffmpeg",
        "-nostdin",
        "-y",
        "-nostats",
        "-hide_banner",
        "-i",
        str(in_path),
        "-filter:a",
        filt,
        "-ar",
        str(spec.sr),
        "-c:a",
        codec,
        "-f",
        "wav",
        str(out_path),
    ]
    return run(cmd, timeout=timeout, cancel=cancel, check=True)
