import math

import pytest

from mixroom.errors import AnalysisError, ProcessFailed
from mixroom.services import ffmpeg, loudness

SUMMARY = """\
[Parsed_ebur128_0 @ 0x55d0] t: 0.1       TARGET:-23 LUFS    M:-120.7 S:-120.7     I: -70.0 LUFS       LRA:   0.0 LU  FTPK: -20.0 dBFS  TPK: -20.0 dBFS
[Parsed_ebur128_0 @ 0x55d0] t: 0.5       TARGET:-23 LUFS    M: -19.8 S:-120.7     I: -19.8 LUFS       LRA:   0.0 LU  FTPK: -19.9 dBFS  TPK: -19.9 dBFS
[Parsed_ebur128_0 @ 0x55d0] t: 1.0       TARGET:-23 LUFS    M: -18.2 S:-120.7     I: -19.5 LUFS       LRA:   0.0 LU  FTPK: -19.9 dBFS  TPK: -19.9 dBFS
[Parsed_ebur128_0 @ 0x55d0] Summary:

  Integrated loudness:
    I:         -19.6 LUFS
    Threshold: -29.6 LUFS

  Loudness range:
    LRA:         2.3 LU
    Threshold: -39.6 LUFS
    LRA low:   -20.4 LUFS
    LRA high:  -18.1 LUFS

  True peak:
    Peak:       -0.8 dBFS
"""


def test_summary_block():
    got = loudness.parse_ebur128(SUMMARY)
    assert got['integrated_lufs'] == pytest.approx(-19.6)
    assert got['loudness_range_lu'] == pytest.approx(2.3)
    assert got['true_peak_db'] == pytest.approx(-0.8)
    # no explicit label, so the loudest frame wins
    assert got['momentary_max_lufs'] == pytest.approx(-18.2)


def test_values_on_label_lines():
    text = (
        'Integrated loudness: -14.2 LUFS\n'
        'Loudness range: 6.5 LU\n'
        'True peak: -1.3 dBTP\n'
        'Momentary max: -9.9 LUFS\n'
    )
    got = loudness.parse_ebur128(text)
    assert got == {
        'integrated_lufs': -14.2,
        'loudness_range_lu': 6.5,
        'true_peak_db': -1.3,
        'momentary_max_lufs': -9.9,
    }


def test_silence_reports_negative_infinity():
    text = SUMMARY.replace('-19.6 LUFS', '-inf LUFS').replace('-0.8 dBFS', '-inf dBFS')
    got = loudness.parse_ebur128(text)
    assert got['integrated_lufs'] == -math.inf
    assert got['true_peak_db'] == -math.inf


def test_missing_fields_stay_none():
    got = loudness.parse_ebur128('Integrated loudness:\n    I: -20.0 LUFS\n')
    assert got['integrated_lufs'] == -20.0
    assert got['true_peak_db'] is None
    assert got['loudness_range_lu'] is None
    assert got['momentary_max_lufs'] is None


PROBE = {
    'format': {'duration': '12.500000'},
    'streams': [
        {'codec_type': 'video', 'codec_name': 'mjpeg'},
        {
            'codec_type': 'audio',
            'codec_name': 'flac',
            'sample_rate': '44100',
            'channels': 2,
            'bits_per_sample': 0,
            'bits_per_raw_sample': '24',
        },
    ],
}


def test_parse_probe_picks_audio_stream():
    got = loudness.parse_probe(PROBE)
    assert got == {
        'duration': 12.5,
        'sample_rate': 44100,
        'bit_depth': 24,
        'channel_count': 2,
        'codec': 'flac',
    }


def test_bit_depth_falls_back_to_sample_format():
    stream = {'sample_fmt': 's16p'}
    assert loudness._bit_depth(stream) == 16
    assert loudness._bit_depth({'sample_fmt': 'fltp'}) == 32
    assert loudness._bit_depth({}) is None


def test_parse_probe_without_audio():
    with pytest.raises(AnalysisError):
        loudness.parse_probe({'streams': [{'codec_type': 'video'}]})


def test_parse_probe_incomplete():
    with pytest.raises(AnalysisError):
        loudness.parse_probe({'streams': [{'codec_type': 'audio', 'channels': 2}]})


@pytest.fixture
def fake_tools(monkeypatch):
    def install(report, probe=PROBE):
        monkeypatch.setattr(ffmpeg, 'probe_json', lambda path, timeout=None, cancel=None: probe)
        monkeypatch.setattr(ffmpeg, 'ebur128_scan', lambda path, timeout=None, cancel=None: report)

    return install


def test_analyze_combines_probe_and_meter(fake_tools, tmp_path):
    fake_tools(SUMMARY)
    a = loudness.analyze(tmp_path / 'x.flac')
    assert a.sample_rate == 44100
    assert a.integrated_lufs == pytest.approx(-19.6)
    assert a.momentary_max_lufs == pytest.approx(-18.2)


def test_analyze_rejects_incomplete_report(fake_tools, tmp_path):
    fake_tools('Integrated loudness:\n    I: -20.0 LUFS\n')
    with pytest.raises(AnalysisError) as exc:
        loudness.analyze(tmp_path / 'x.flac')
    assert 'true_peak_db' in exc.value.message
    assert exc.value.public_message == 'Audio analysis failed'


def test_analyze_wraps_tool_failure(monkeypatch, tmp_path):
    def broken(path, timeout=None, cancel=None):
        raise ProcessFailed(['ffprobe'], 1, 'moov atom not found')

    monkeypatch.setattr(ffmpeg, 'probe_json', broken)
    with pytest.raises(AnalysisError) as exc:
        loudness.analyze(tmp_path / 'x.mp4')
    assert 'moov atom' in exc.value.diagnostics


def test_analyze_without_tools_installed(monkeypatch, tmp_path):
    def missing(path, timeout=None, cancel=None):
        raise FileNotFoundError('ffprobe')

    monkeypatch.setattr(ffmpeg, 'probe_json', missing)
    with pytest.raises(AnalysisError):
        loudness.analyze(tmp_path / 'x.wav')
