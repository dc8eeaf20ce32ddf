"""Tests for text synchronization frames and sequence gate."""

import asyncio
import json

import pytest

from peerpair.errors import TransportFailure
from peerpair.text_sync import (
    FullMessage,
    GateResult,
    PatchMessage,
    TextSender,
    apply_message,
    encode_text_message,
    parse_text_message,
)


class TestParseTextMessage:
    """Tests for parsing text frames."""

    def test_full(self):
        message = parse_text_message('{"type":"full","seq":3,"text":"hello"}')
        assert message == FullMessage(seq=3, text="hello")

    def test_patch(self):
        message = parse_text_message('{"type":"patch","seq":4,"from":1,"to":2,"text":"X"}')
        assert message == PatchMessage(seq=4, start=1, end=2, text="X")

    def test_bytes_frame(self):
        assert parse_text_message(b'{"type":"full","seq":0,"text":""}') == FullMessage(0, "")

    @pytest.mark.parametrize(
        "raw",
        [
            "not json",
            "[1, 2]",
            '{"type":"full","text":"no seq"}',
            '{"type":"full","seq":"1","text":"x"}',
            '{"type":"full","seq":true,"text":"x"}',
            '{"type":"full","seq":1}',
            '{"type":"cursor","seq":1}',
        ],
    )
    def test_invalid_frames_are_dropped(self, raw):
        assert parse_text_message(raw) is None

    def test_deeply_nested_frame_is_dropped(self):
        assert parse_text_message("[" * 200_000) is None


class TestEncodeTextMessage:
    """Tests for serializing text frames."""

    def test_full(self):
        assert json.loads(encode_text_message(FullMessage(seq=1, text="hi"))) == {
            "type": "full",
            "seq": 1,
            "text": "hi",
        }

    def test_patch_uses_from_and_to(self):
        payload = json.loads(encode_text_message(PatchMessage(seq=2, start=0, end=3, text="a")))
        assert payload == {"type": "patch", "seq": 2, "from": 0, "to": 3, "text": "a"}


class TestApplyMessage:
    """Tests for the sequence gate."""

    def test_stale_update_is_dropped(self):
        assert apply_message("abc", 5, FullMessage(seq=3, text="old")) is None

    def test_duplicate_update_is_dropped(self):
        assert apply_message("abc", 5, FullMessage(seq=5, text="dup")) is None

    def test_newer_full_replaces_buffer(self):
        assert apply_message("abc", 5, FullMessage(seq=6, text="new")) == GateResult("new", 6)

    def test_first_update_after_reset(self):
        assert apply_message("", -1, FullMessage(seq=0, text="first")) == GateResult("first", 0)

    def test_sequence_gaps_are_allowed(self):
        assert apply_message("a", 1, FullMessage(seq=10, text="b")) == GateResult("b", 10)

    def test_patch_prepends(self):
        result = apply_message("new", 6, PatchMessage(seq=7, start=0, end=0, text="X"))
        assert result == GateResult("Xnew", 7)

    def test_patch_replaces_range(self):
        result = apply_message("hello world", 0, PatchMessage(seq=1, start=6, end=11, text="there"))
        assert result == GateResult("hello there", 1)

    def test_patch_past_end_appends(self):
        result = apply_message("abc", 0, PatchMessage(seq=1, start=10, end=20, text="!"))
        assert result == GateResult("abc!", 1)

    @pytest.mark.parametrize(
        "patch",
        [
            PatchMessage(seq=7, start=None, end=0, text="X"),
            PatchMessage(seq=7, start=0, end=0, text=None),
            PatchMessage(seq=7, start="0", end=1, text="X"),
            PatchMessage(seq=7, start=3, end=1, text="X"),
            PatchMessage(seq=7, start=-1, end=1, text="X"),
            PatchMessage(seq=7, start=True, end=1, text="X"),
        ],
    )
    def test_malformed_patch_is_dropped(self, patch):
        assert apply_message("abc", 6, patch) is None

    def test_stream_scenario(self):
        """last=5: seq 3 dropped, seq 6 applied, patch seq 7 prepends."""
        text, last = "current", 5

        assert apply_message(text, last, FullMessage(seq=3, text="old")) is None

        result = apply_message(text, last, FullMessage(seq=6, text="new"))
        text, last = result.text, result.last_seq

        result = apply_message(text, last, PatchMessage(seq=7, start=0, end=0, text="X"))
        assert result == GateResult("Xnew", 7)


class TestTextSender:
    """Tests for the debounced sender."""

    async def test_sends_after_delay(self):
        sent = []
        sender = TextSender(sent.append, delay=0.01)

        sender.schedule(lambda: FullMessage(seq=1, text="a"))
        assert sender.pending
        assert sent == []

        await asyncio.sleep(0.05)

        assert not sender.pending
        assert [json.loads(s) for s in sent] == [{"type": "full", "seq": 1, "text": "a"}]

    async def test_rapid_edits_coalesce(self):
        sent = []
        sender = TextSender(sent.append, delay=0.02)
        current = {"seq": 0, "text": ""}

        for i, text in enumerate(["h", "he", "hel", "hell", "hello"], start=1):
            current = {"seq": i, "text": text}
            sender.schedule(lambda: FullMessage(**current))

        await asyncio.sleep(0.08)

        assert len(sent) == 1
        assert json.loads(sent[0])["text"] == "hello"

    async def test_snapshot_none_sends_nothing(self):
        sent = []
        sender = TextSender(sent.append, delay=0.01)

        sender.schedule(lambda: None)
        await asyncio.sleep(0.05)

        assert sent == []

    async def test_cancel(self):
        sent = []
        sender = TextSender(sent.append, delay=0.01)

        sender.schedule(lambda: FullMessage(seq=1, text="a"))
        sender.cancel()
        await asyncio.sleep(0.05)

        assert sent == []
        assert not sender.pending

    async def test_transport_failure_is_logged_not_raised(self, caplog):
        def failing_send(frame):
            raise TransportFailure("Data channel not open")

        sender = TextSender(failing_send, delay=0.01)
        sender.schedule(lambda: FullMessage(seq=1, text="a"))
        await asyncio.sleep(0.05)

        assert "Failed to send text update" in caplog.text
