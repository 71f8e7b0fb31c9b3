"""Tests for captions.py: caption record normalization."""

import json

import pytest

from space_press.shared import CaptionParseError
from space_press.captions import (
    Cue, clean_caption_text, parse_caption_record, shift_cues, normalize_records,
    read_caption_records, load_captions,
)

ZWSP = chr(0x200B)
RLO = chr(0x202E)


def _envelope(record, sender=None):
    payload = {"body": json.dumps(record)}
    if sender is not None:
        payload["sender"] = sender
    return {"kind": 1, "payload": json.dumps(payload)}


MIXED_BATCH = [
    {"start": 4.0, "end": 5.0, "text": "four"},
    {"startMs": 1500, "endMs": 2500, "text": "one and a half"},
    {"offset": 3, "duration": 0.5, "body": "three"},
    {"start": "2", "durationMs": 800, "caption": "two"},
    {"start": 0.2, "end": 0.9, "payloadText": "zero"},
    {"start": 9, "end": 8, "text": "backwards"},
    {"end": 3, "text": "no start"},
    {"start": 6, "text": "no end"},
    {"start": 7, "end": 7.5, "text": "   "},
    {"start": True, "end": 2, "text": "boolean start"},
    {"start": "nan", "end": 2, "text": "nan start"},
    "not a record",
    None,
]


# ---------------------------------------------------------------------------
# parse_caption_record
# ---------------------------------------------------------------------------

class TestParseCaptionRecord:
    def test_seconds_keys(self):
        assert parse_caption_record({"start": 1, "end": 2.5, "text": "hi"}) == Cue(1.0, 2.5, "hi")

    def test_millisecond_keys(self):
        cue = parse_caption_record({"startMs": 1500, "endMs": 2500, "text": "x"})
        assert (cue.start, cue.end) == (1.5, 2.5)

    def test_offset_plus_duration(self):
        cue = parse_caption_record({"offset": 3, "duration": 2, "body": "hi"})
        assert (cue.start, cue.end, cue.text) == (3.0, 5.0, "hi")

    def test_duration_in_ms(self):
        cue = parse_caption_record({"start": 1, "durationMs": 250, "text": "x"})
        assert cue.end == pytest.approx(1.25)

    def test_explicit_start_beats_ms_start(self):
        cue = parse_caption_record({"start": 1, "startMs": 9000, "end": 2, "text": "t"})
        assert cue.start == 1.0

    def test_explicit_end_beats_duration(self):
        cue = parse_caption_record({"start": 1, "end": 2, "duration": 10, "text": "t"})
        assert cue.end == 2.0

    def test_numeric_strings(self):
        cue = parse_caption_record({"start": "1.5", "end": "2", "text": "t"})
        assert (cue.start, cue.end) == (1.5, 2.0)

    def test_text_priority(self):
        cue = parse_caption_record({"start": 0, "end": 1, "text": "", "body": "from body"})
        assert cue.text == "from body"

    def test_end_before_start_rejected(self):
        with pytest.raises(CaptionParseError):
            parse_caption_record({"start": 5, "end": 3, "text": "b"})

    def test_negative_duration_rejected(self):
        with pytest.raises(CaptionParseError):
            parse_caption_record({"start": 5, "duration": -1, "text": "b"})

    @pytest.mark.parametrize("record", [
        {"end": 3, "text": "no start"},
        {"start": 6, "text": "no end"},
        {"start": 1, "end": 2},
        {"start": 1, "end": 2, "text": "  \n "},
        {"start": True, "end": 2, "text": "boolean"},
        {"start": "nan", "end": 2, "text": "nan"},
        "not a record",
    ])
    def test_unresolvable_records(self, record):
        with pytest.raises(CaptionParseError):
            parse_caption_record(record)

    def test_speaker_fields(self):
        cue = parse_caption_record({"start": 0, "end": 1, "text": "t",
                                    "displayName": "Alice A", "username": "@alice"})
        assert cue.speaker == "Alice A"
        assert cue.handle == "alice"

    def test_envelope_unwrapped(self):
        raw = _envelope({"start": 1, "end": 2, "body": "hi there"},
                        sender={"display_name": "Bob", "screen_name": "bob"})
        cue = parse_caption_record(raw)
        assert cue == Cue(1.0, 2.0, "hi there", speaker="Bob", handle="bob")

    def test_record_speaker_beats_sender(self):
        raw = _envelope({"start": 1, "end": 2, "body": "x", "speaker_name": "Carol"},
                        sender={"display_name": "Bob"})
        assert parse_caption_record(raw).speaker == "Carol"

    def test_broken_envelope_falls_back_to_outer_record(self):
        raw = {"payload": "{not json", "start": 1, "end": 2, "text": "outer"}
        assert parse_caption_record(raw).text == "outer"


# ---------------------------------------------------------------------------
# clean_caption_text
# ---------------------------------------------------------------------------

class TestCleanCaptionText:
    def test_collapses_whitespace(self):
        assert clean_caption_text("  Hello \n\t world  ") == "Hello world"

    def test_removes_invisible_controls(self):
        assert clean_caption_text(f"He{ZWSP}llo {RLO}there") == "Hello there"

    def test_space_before_punctuation(self):
        assert clean_caption_text("well , ok !") == "well, ok!"

    def test_nfc(self):
        decomposed = "e" + chr(0x0301)
        assert clean_caption_text(decomposed) == chr(0x00E9)

    def test_non_string(self):
        assert clean_caption_text(None) == ""
        assert clean_caption_text(42) == ""


# ---------------------------------------------------------------------------
# normalize_records
# ---------------------------------------------------------------------------

class TestNormalizeRecords:
    def test_end_before_start_is_dropped(self):
        cues = normalize_records([{"start": 5, "end": 3, "text": "b"},
                                  {"start": 1, "end": 2, "text": "a"}])
        assert [(c.start, c.end, c.text) for c in cues] == [(1.0, 2.0, "a")]

    def test_sorted_and_well_formed(self):
        cues = normalize_records(MIXED_BATCH)
        starts = [c.start for c in cues]
        assert starts == sorted(starts)
        assert all(0 <= c.start <= c.end for c in cues)
        assert all(c.text for c in cues)
        assert [c.text for c in cues] == ["zero", "one and a half", "two", "three", "four"]

    def test_never_grows(self):
        assert len(normalize_records(MIXED_BATCH)) <= len(MIXED_BATCH)

    def test_stable_for_ties(self):
        cues = normalize_records([
            {"start": 2, "end": 3, "text": "first"},
            {"start": 1, "end": 2, "text": "early"},
            {"start": 2, "end": 4, "text": "second"},
        ])
        assert [c.text for c in cues] == ["early", "first", "second"]

    def test_shift_clamps_at_zero(self):
        cues = normalize_records([{"start": 1, "end": 2, "text": "a"},
                                  {"start": 3, "end": 4, "text": "b"}], shift=1.5)
        assert [(c.start, c.end) for c in cues] == [(0.0, 0.5), (1.5, 2.5)]

    def test_negative_start_clamped_without_shift(self):
        cues = normalize_records([{"start": -1, "end": 2, "text": "a"}])
        assert (cues[0].start, cues[0].end) == (0.0, 2.0)

    @pytest.mark.parametrize("shift", [0.0, 0.5, 2.0, 4.5, 100.0])
    def test_shift_is_post_processing(self, shift):
        assert normalize_records(MIXED_BATCH, shift) == shift_cues(normalize_records(MIXED_BATCH), shift)

    def test_no_usable_records(self):
        assert normalize_records([{"text": "x"}, "junk"]) == []


# ---------------------------------------------------------------------------
# File reading
# ---------------------------------------------------------------------------

class TestReadCaptions:
    def test_skips_blank_and_bad_lines(self, tmp_path):
        path = tmp_path / "cc.jsonl"
        path.write_text(
            json.dumps({"start": 2, "end": 3, "text": "b"}) + "\n"
            "\n"
            "{broken\n"
            + json.dumps([{"start": 0, "end": 1, "text": "a"}]) + "\n",
            encoding="utf-8",
        )
        records = read_caption_records(path)
        assert len(records) == 2
        cues = load_captions(path, shift=0.5)
        assert [(c.start, c.text) for c in cues] == [(0.0, "a"), (1.5, "b")]

    def test_missing_file(self, tmp_path):
        assert load_captions(tmp_path / "missing.jsonl") == []
        assert load_captions(None) == []
