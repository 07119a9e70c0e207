"""Tests for the response parser."""

from __future__ import annotations

import math

import pytest

from hwtest_ieee488.codec import (
    ArbitraryAscii,
    ArbitraryBlock,
    Boolean,
    Numeric,
    String,
    ValueKind,
)
from hwtest_ieee488.errors import MalformedValue, MissingTerminator, TruncatedBlock
from hwtest_ieee488.parser import ResponseParser, Shape


@pytest.fixture
def parser() -> ResponseParser:
    return ResponseParser()


class TestTerminators:
    """Tests for terminator handling."""

    def test_longest_first(self) -> None:
        assert ResponseParser(("\n", "\r\n")).terminators == (b"\r\n", b"\n")

    def test_crlf_stripped(self, parser: ResponseParser) -> None:
        assert parser.strip_terminator(b"1.0\r\n") == b"1.0"

    def test_only_one_terminator_removed(self, parser: ResponseParser) -> None:
        assert parser.strip_terminator(b"abc\n\n") == b"abc\n"

    def test_missing_terminator_raises(self, parser: ResponseParser) -> None:
        with pytest.raises(MissingTerminator):
            parser.parse(b"5.0")

    def test_optional_terminator(self) -> None:
        lenient = ResponseParser(require_terminator=False)
        assert lenient.parse(b"5.0") == Numeric(5.0)

    def test_empty_terminators_raise(self) -> None:
        with pytest.raises(ValueError):
            ResponseParser(())


class TestScalar:
    """Tests for scalar responses."""

    def test_nr3_number(self, parser: ResponseParser) -> None:
        assert parser.parse(b"+5.00000E+00\n") == Numeric(5.0)

    def test_string(self, parser: ResponseParser) -> None:
        assert parser.parse(b'"hello, world"\n') == String("hello, world")

    def test_kind_hint(self, parser: ResponseParser) -> None:
        assert parser.parse(b"1\n", kind=ValueKind.BOOLEAN) == Boolean(True)

    def test_multiple_elements_raise(self, parser: ResponseParser) -> None:
        with pytest.raises(MalformedValue, match="one data element"):
            parser.parse(b"1,2\n")

    def test_ieee_nan_sentinel(self) -> None:
        value = ResponseParser(ieee_sentinels=True).parse(b"9.91E+37\n")
        assert isinstance(value, Numeric)
        assert math.isnan(value.value)

    def test_ieee_negative_infinity(self) -> None:
        value = ResponseParser(ieee_sentinels=True).parse(b"-9.9E37\n")
        assert value == Numeric(-math.inf)

    def test_sentinels_untouched_by_default(self, parser: ResponseParser) -> None:
        assert parser.parse(b"9.9E37\n") == Numeric(9.9e37)


class TestList:
    """Tests for list responses."""

    def test_numbers(self, parser: ResponseParser) -> None:
        result = parser.parse(b"1,2.5,-3E-1\r\n", Shape.LIST)
        assert result == (Numeric(1), Numeric(2.5), Numeric(-0.3))

    def test_mixed_kinds(self, parser: ResponseParser) -> None:
        result = parser.parse(b'1,"a,b",#12xy\n', Shape.LIST)
        assert result == (Numeric(1), String("a,b"), ArbitraryBlock(b"xy"))

    def test_empty(self, parser: ResponseParser) -> None:
        assert parser.parse(b"\n", Shape.LIST) == ()


class TestBlock:
    """Tests for block responses."""

    def test_payload_with_terminator_bytes(self, parser: ResponseParser) -> None:
        block = parser.parse(b"#15a\nb\nc\n", Shape.BLOCK)
        assert block == ArbitraryBlock(b"a\nb\nc")

    def test_missing_trailer_accepted(self, parser: ResponseParser) -> None:
        assert parser.parse_block(b"#13abc") == ArbitraryBlock(b"abc")

    def test_truncated(self, parser: ResponseParser) -> None:
        with pytest.raises(TruncatedBlock):
            parser.parse_block(b"#15abcd")

    def test_trailing_garbage(self, parser: ResponseParser) -> None:
        with pytest.raises(MalformedValue):
            parser.parse_block(b"#13abcxyz\n")

    def test_indefinite_form(self, parser: ResponseParser) -> None:
        assert parser.parse(b"#0abc\n", Shape.BLOCK) == ArbitraryBlock(b"abc")


class TestArbitraryAscii:
    """Tests for arbitrary ASCII responses."""

    def test_commas_and_spaces_kept(self, parser: ResponseParser) -> None:
        value = parser.parse(b"GPIB, MEM 2M,\"x\"\r\n", Shape.ASCII)
        assert value == ArbitraryAscii('GPIB, MEM 2M,"x"')

    def test_kind_ignored(self, parser: ResponseParser) -> None:
        assert parser.parse(b"1.5\n", Shape.ASCII, ValueKind.NUMERIC) == ArbitraryAscii("1.5")

    def test_missing_terminator_raises(self, parser: ResponseParser) -> None:
        with pytest.raises(MissingTerminator):
            parser.parse(b"GPIB", Shape.ASCII)


class TestSplitUnits:
    """Tests for chained query responses."""

    def test_split_on_top_level_semicolons(self, parser: ResponseParser) -> None:
        units = parser.split_units(b'1;"a;b";#13x;y\n')
        assert units == [b"1", b'"a;b"', b"#13x;y"]
