import sys
import threading
import time

import pytest

from mixroom.errors import ProcessFailed, ProcessingCancelled, ProcessTimeout
from mixroom.services import ffmpeg


def _py(code):
    return [sys.executable, '-c', code]


def test_run_captures_output():
    proc = ffmpeg.run(_py('import sys; print("out"); print("err", file=sys.stderr)'), timeout=10)
    assert proc.returncode == 0
    assert proc.stdout.strip() == 'out'
    assert proc.stderr.strip() == 'err'


def test_nonzero_exit_raises_with_stderr_tail():
    code = 'import sys; sys.stderr.write("x" * 1000 + "Invalid data"); sys.exit(3)'
    with pytest.raises(ProcessFailed) as exc:
        ffmpeg.run(_py(code), timeout=10, check=True)
    assert exc.value.returncode == 3
    assert exc.value.diagnostics.endswith('Invalid data')
    assert len(exc.value.diagnostics) == 400


def test_nonzero_exit_without_check():
    proc = ffmpeg.run(_py('raise SystemExit(2)'), timeout=10)
    assert proc.returncode == 2


def test_timeout_kills_child():
    started = time.monotonic()
    with pytest.raises(ProcessTimeout) as exc:
        ffmpeg.run(_py('import time; time.sleep(30)'), timeout=0.5)
    assert time.monotonic() - started < 10
    assert exc.value.retryable


def test_cancel_kills_child():
    cancel = threading.Event()
    threading.Timer(0.3, cancel.set).start()
    started = time.monotonic()
    with pytest.raises(ProcessingCancelled):
        ffmpeg.run(_py('import time; time.sleep(30)'), timeout=20, cancel=cancel)
    assert time.monotonic() - started < 10
