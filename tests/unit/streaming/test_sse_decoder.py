#!/usr/bin/env python3
from __future__ import annotations

from claude_intercept.streaming.sse import SSEDecoder, parse_frame


class TestParseFrame:
    """Line-level parsing of one complete frame."""

    def test_defaults_to_message_event(self):
        frame = parse_frame("data: hello", 1)
        assert frame.event == "message"
        assert frame.data == "hello"
        assert frame.id is None

    def test_empty_event_name_falls_back_to_message(self):
        assert parse_frame("event:   \ndata: x", 1).event == "message"

    def test_data_lines_joined_in_order(self):
        frame = parse_frame("event: chunk\ndata: first\ndata:second\ndata:  third", 4)
        assert frame.event == "chunk"
        assert frame.data == "first\nsecond\nthird"
        assert frame.sequence == 4

    def test_comments_ignored_and_id_parsed(self):
        frame = parse_frame(": keep-alive\nid: 42 \nevent: ping\ndata: {}", 1)
        assert frame.id == "42"
        assert frame.event == "ping"
        assert frame.data == "{}"


class TestSSEDecoder:
    """Incremental framing across chunk boundaries."""

    def setup_method(self):
        self.decoder = SSEDecoder()

    def test_frame_split_across_chunks(self):
        first = self.decoder.feed(b"event: a\ndata: 1\n\nevent: b\nda")
        second = self.decoder.feed(b"ta: 2\n\n")

        assert [(f.sequence, f.event, f.data) for f in first] == [(1, "a", "1")]
        assert [(f.sequence, f.event, f.data) for f in second] == [(2, "b", "2")]

    def test_crlf_delimiters(self):
        frames = self.decoder.feed(b"event: x\r\ndata: y\r\n\r\nevent: z\r\ndata: w\r\n\r\n")
        assert [(f.event, f.data) for f in frames] == [("x", "y"), ("z", "w")]

    def test_trailing_partial_frame_is_not_emitted(self):
        frames = self.decoder.feed(b"data: a\n\ndata: b")
        assert len(frames) == 1
        assert self.decoder.pending == "data: b"
        assert self.decoder.summary().event_count == 1

    def test_blank_frames_are_skipped(self):
        frames = self.decoder.feed(b"\n\n\n\ndata: x\n\n")
        assert [f.data for f in frames] == ["x"]
        assert frames[0].sequence == 1

    def test_multibyte_character_split_across_chunks(self):
        encoded = "data: café\n\n".encode("utf-8")
        split = encoded.index(b"\xa9")
        assert self.decoder.feed(encoded[:split]) == []
        frames = self.decoder.feed(encoded[split:])
        assert frames[0].data == "café"

    def test_stream_bytes_and_type_counts(self):
        chunks = [b"event: ping\ndata: {}\n\n", b"event: ping\ndata: {}\n\nevent: done\ndata: {}\n\n", b"junk"]
        for chunk in chunks:
            self.decoder.feed(chunk)

        summary = self.decoder.summary()
        assert summary.stream_bytes == sum(len(c) for c in chunks)
        assert summary.event_count == 3
        assert summary.type_counts == {"ping": 2, "done": 1}


class TestUsageTracking:
    """Token counters fed from message_delta frames."""

    def setup_method(self):
        self.decoder = SSEDecoder()

    def test_output_tokens_from_message_delta(self):
        self.decoder.feed(b'event: message_delta\ndata: {"usage":{"output_tokens":5}}\n\n')
        self.decoder.feed(b"event: message_stop\ndata: {}\n\n")

        summary = self.decoder.summary()
        assert summary.output_tokens == 5
        assert summary.input_tokens == 0
        assert summary.type_counts["message_delta"] == 1

    def test_last_seen_value_wins(self):
        self.decoder.feed(b'event: message_delta\ndata: {"usage":{"output_tokens":5}}\n\n')
        self.decoder.feed(b'event: message_delta\ndata: {"usage":{"output_tokens":9,"input_tokens":"12"}}\n\n')
        summary = self.decoder.summary()
        assert summary.output_tokens == 9
        assert summary.input_tokens == 12

    def test_non_numeric_values_keep_previous(self):
        self.decoder.feed(b'event: message_delta\ndata: {"usage":{"output_tokens":5,"input_tokens":3}}\n\n')
        self.decoder.feed(b'event: message_delta\ndata: {"usage":{"output_tokens":"many","input_tokens":null}}\n\n')
        summary = self.decoder.summary()
        assert summary.output_tokens == 5
        assert summary.input_tokens == 3

    def test_usage_ignored_on_other_events(self):
        self.decoder.feed(b'event: message_start\ndata: {"usage":{"output_tokens":50}}\n\n')
        assert self.decoder.summary().output_tokens == 0

    def test_malformed_json_is_ignored(self):
        frames = self.decoder.feed(b"event: message_delta\ndata: {not json\n\n")
        assert len(frames) == 1
        assert self.decoder.summary().output_tokens == 0
