import os
import shutil
import sys
import time

import numpy as np
import soundfile as sf
import pytest

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from mixroom import create_app
from mixroom.engine.versions import VersionManager
from mixroom.models import specs
from mixroom.models.records import AudioAnalysis, NormalizationResult
from mixroom.models.specs import VersionType
from mixroom.store import Store

requires_ffmpeg = pytest.mark.skipif(
    shutil.which('ffmpeg') is None or shutil.which('ffprobe') is None,
    reason='ffmpeg/ffprobe not installed',
)

STAFF = {'X-User-Id': 'eng-1', 'X-User-Role': 'ENGINEER'}
OWNER = {'X-User-Id': 'client-1', 'X-User-Role': 'CLIENT'}
STRANGER = {'X-User-Id': 'client-2', 'X-User-Role': 'CLIENT'}

FAKE_ANALYSIS = AudioAnalysis(
    duration=1.0,
    sample_rate=48000,
    bit_depth=24,
    channel_count=2,
    codec='pcm_s24le',
    integrated_lufs=-20.0,
    true_peak_db=-3.0,
    loudness_range_lu=4.0,
    momentary_max_lufs=-18.5,
)


class FakeNormalizer:
    """Copies bytes instead of running ffmpeg."""

    def __init__(self, lufs=-16.1, delay=0.0, fail=None):
        self.lufs = lufs
        self.delay = delay
        self.fail = fail
        self.calls = []

    def analyze(self, path, cancel=None):
        return FAKE_ANALYSIS

    def normalize(self, input_path, output_path, version_type, cancel=None):
        self.calls.append(version_type)
        if self.delay:
            time.sleep(self.delay)
        if self.fail is not None:
            raise self.fail
        shutil.copyfile(input_path, output_path)
        if version_type is VersionType.ATMOS:
            return NormalizationResult(str(output_path), False, None)
        normalized = specs.target_for(version_type) is not None
        return NormalizationResult(
            str(output_path),
            normalized,
            self.lufs if normalized else FAKE_ANALYSIS.integrated_lufs,
            analysis=FAKE_ANALYSIS,
        )


@pytest.fixture
def store(tmp_path):
    s = Store(tmp_path / 'mixroom.db')
    yield s
    s.close()


@pytest.fixture
def project(store):
    return store.create_project('Album', user_id='client-1', artist='The Band')


@pytest.fixture
def track(store, project):
    return store.create_track(project['id'], 'Opener')


@pytest.fixture
def normalizer():
    return FakeNormalizer()


@pytest.fixture
def manager(tmp_path, store, normalizer):
    m = VersionManager(store, normalizer, tmp_path / 'storage', workers=4, waveform_width=32)
    yield m
    m.shutdown()


@pytest.fixture
def app(tmp_path, normalizer):
    app = create_app(
        {
            'TESTING': True,
            'STORAGE_ROOT': str(tmp_path / 'storage'),
            'DATABASE_PATH': str(tmp_path / 'mixroom.db'),
            'WAVEFORM_WIDTH': 50,
        },
        normalizer=normalizer,
    )
    yield app
    app.extensions['mixroom'].shutdown()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def seeded(app):
    """A project owned by client-1 with one track, in the app's store."""
    store = app.extensions['mixroom'].store
    project = store.create_project('Album', user_id='client-1', artist='The Band')
    track = store.create_track(project['id'], 'Opener')
    return project, track


@pytest.fixture
def sine_file(tmp_path):
    sr = 48000
    t = np.linspace(0, 1.0, sr, False)
    wave = 0.1 * np.sin(2 * np.pi * 440 * t)
    path = tmp_path / 'tone.wav'
    sf.write(path, wave, sr)
    return path


def make_source(tmp_path, name='mix.wav', data=b'RIFF-not-really-audio'):
    p = tmp_path / name
    p.write_bytes(data)
    return p
