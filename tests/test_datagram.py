"""Tests for UDP packet framing."""

from __future__ import annotations

import pytest

from vlessgate.protocol.datagram import MAX_DATAGRAM_SIZE, DatagramFramer, frame_datagram


class TestFrameDatagram:
    def test_length_prefix(self) -> None:
        assert frame_datagram(b"hello") == b"\x00\x05hello"

    def test_empty_packet(self) -> None:
        assert frame_datagram(b"") == b"\x00\x00"

    def test_too_large(self) -> None:
        with pytest.raises(ValueError):
            frame_datagram(b"x" * (MAX_DATAGRAM_SIZE + 1))


class TestDatagramFramer:
    """Splitting a byte stream back into packets."""

    def test_several_packets_in_one_feed(self) -> None:
        framer = DatagramFramer()
        data = frame_datagram(b"one") + frame_datagram(b"") + frame_datagram(b"three")
        assert framer.feed(data) == [b"one", b"", b"three"]
        assert framer.pending == 0

    def test_packet_split_across_feeds(self) -> None:
        framer = DatagramFramer()
        data = frame_datagram(b"split me")
        assert framer.feed(data[:1]) == []
        assert framer.feed(data[1:4]) == []
        assert framer.pending == 4
        assert framer.feed(data[4:]) == [b"split me"]
        assert framer.pending == 0

    def test_keeps_trailing_partial(self) -> None:
        framer = DatagramFramer()
        data = frame_datagram(b"a") + frame_datagram(b"bc")[:3]
        assert framer.feed(data) == [b"a"]
        assert framer.feed(b"c") == [b"bc"]
