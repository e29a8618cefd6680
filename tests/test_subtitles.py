"""Tests for SRT parsing and cue tracking"""
import pytest

from audio_sync import CueTracker, SrtEntry, format_time, parse_srt
from audio_sync.subtitles import parse_time

SAMPLE_SRT = (
    "1\r\n00:00:01,500 --> 00:00:03,000\r\nA door <i>creaks</i> open.\r\n\r\n"
    "2\n00:01:05,250 --> 00:01:08,000\nShe walks in\nslowly.\n\n"
    "3\nnot a timecode\nignored\n\n"
    "4\n01:00:00,000 --> 01:00:02,000\n"
)


def test_parse_srt():
    entries = parse_srt(SAMPLE_SRT)

    assert [e.id for e in entries] == ["1", "2"]
    assert entries[0].start_time == pytest.approx(1.5)
    assert entries[0].text == "A door creaks open."
    assert entries[1].start_time == pytest.approx(65.25)
    assert entries[1].text == "She walks in slowly."


def test_parse_time():
    assert parse_time("01:02:03,004") == pytest.approx(3723.004)


@pytest.mark.parametrize("seconds,expected", [
    (0, "00:00:00"),
    (35.5, "00:00:35"),
    (3725.9, "01:02:05"),
    (None, "--:--:--"),
])
def test_format_time(seconds, expected):
    assert format_time(seconds) == expected


def _entries():
    return [
        SrtEntry("1", 10.0, 12.0, "first"),
        SrtEntry("2", 20.0, 22.0, "second"),
        SrtEntry("3", 30.0, 32.0, "third"),
    ]


def test_cue_fires_once():
    cues = CueTracker(_entries(), window=0.3)

    assert cues.due(9.5) is None
    assert cues.due(10.1).id == "1"
    assert cues.due(10.2) is None


def test_forget_after_rearms_future_cues():
    cues = CueTracker(_entries(), window=0.3)
    for t in (10.0, 20.0, 30.0):
        cues.due(t)

    assert cues.forget_after(15.0) == 2
    assert cues.is_announced("1")
    assert not cues.is_announced("2")
    assert cues.due(20.0).id == "2"


def test_entry_at():
    cues = CueTracker(_entries())
    assert cues.entry_at(21.0).text == "second"
    assert cues.entry_at(25.0) is None
