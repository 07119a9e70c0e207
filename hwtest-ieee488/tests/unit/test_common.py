"""Tests for common command helpers."""

from __future__ import annotations

import pytest

from hwtest_ieee488.common import MANDATORY_COMMANDS, InstrumentIdentity, parse_idn_response


class TestParseIdnResponse:
    """Tests for parse_idn_response."""

    def test_four_fields(self) -> None:
        identity = parse_idn_response("ACME,Model1,SN123,1.0")
        assert identity == InstrumentIdentity("ACME", "Model1", "SN123", "1.0")

    def test_whitespace_stripped(self) -> None:
        identity = parse_idn_response(" B&K Precision , 9115 , 602201010727910028 , V1.74 ")
        assert identity.manufacturer == "B&K Precision"
        assert identity.serial == "602201010727910028"

    def test_zero_fields_mean_unavailable(self) -> None:
        identity = parse_idn_response("ACME,Model1,0,0")
        assert identity.serial == ""
        assert identity.firmware == ""

    def test_extra_fields_join_firmware(self) -> None:
        identity = parse_idn_response("ACME,Model1,SN1,1.0,FPGA 2.3")
        assert identity.firmware == "1.0,FPGA 2.3"

    def test_too_few_fields(self) -> None:
        with pytest.raises(ValueError, match="at least 4"):
            parse_idn_response("ACME,Model1")


def test_mandatory_commands_cover_common_set() -> None:
    assert {"*CLS", "*ESE?", "*IDN?", "*OPC?", "*RST", "*STB?", "*TST?", "*WAI"} <= MANDATORY_COMMANDS
