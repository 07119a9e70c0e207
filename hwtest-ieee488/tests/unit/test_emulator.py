"""Tests for the simulated IEEE 488.2 instrument."""

from __future__ import annotations

import pytest

from hwtest_ieee488.codec import ArbitraryBlock, String
from hwtest_ieee488.emulator import (
    SimulatedGpibInstrument,
    SimulatedInstrument,
    SimulatedInstrumentConfig,
)
from hwtest_ieee488.errors import ConnectionLost, TransportTimeout


def _query(instrument: SimulatedInstrument, text: str) -> str:
    instrument.write(text.encode("ascii") + b"\n")
    return instrument.read_until(b"\n").decode("ascii").rstrip("\n")


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


class TestSimulatedInstrumentConfig:
    """Tests for SimulatedInstrumentConfig validation."""

    def test_defaults(self) -> None:
        config = SimulatedInstrumentConfig()
        assert config.scpi_version == "1999.0"
        assert config.error_queue_size == 10

    def test_queue_too_small(self) -> None:
        with pytest.raises(ValueError):
            SimulatedInstrumentConfig(error_queue_size=1)

    def test_empty_identity(self) -> None:
        with pytest.raises(ValueError):
            SimulatedInstrumentConfig(identity="")

    @pytest.mark.parametrize("options", [("A,B",), ("",), ("OPT\n",)])
    def test_bad_options(self, options: tuple[str, ...]) -> None:
        with pytest.raises(ValueError):
            SimulatedInstrumentConfig(options=options)

    def test_no_saved_setting_slots(self) -> None:
        with pytest.raises(ValueError):
            SimulatedInstrumentConfig(saved_setting_slots=0)


# ---------------------------------------------------------------------------
# Message framing
# ---------------------------------------------------------------------------


class TestFraming:
    """Tests for input buffering and message boundaries."""

    def test_partial_writes_buffered(self) -> None:
        instrument = SimulatedInstrument()
        instrument.write(b"*ID")
        with pytest.raises(TransportTimeout):
            instrument.read_until(b"\n")
        instrument.write(b"N?\n")
        assert instrument.read_until(b"\n") == b"HWTEST,SIM488,SN000001,1.0\n"
        assert instrument.received == [b"*ID", b"N?\n"]

    def test_block_payload_not_split(self) -> None:
        captured: list[object] = []
        instrument = SimulatedInstrument()
        instrument.register_command("DATA", captured.extend)
        instrument.write(b"DATA #13a\nb\n")
        assert captured == [ArbitraryBlock(b"a\nb")]
        assert instrument.error_queue == ()

    def test_quoted_terminator_not_split(self) -> None:
        captured: list[object] = []
        instrument = SimulatedInstrument()
        instrument.register_command("DISPlay:TEXT", captured.extend)
        instrument.write(b'DISP:TEXT "a\nb"\n')
        assert captured == [String("a\nb")]

    def test_chained_responses_share_terminator(self) -> None:
        instrument = SimulatedInstrument()
        assert _query(instrument, "*TST?;*ESE?") == "0;0"

    def test_read_available(self) -> None:
        instrument = SimulatedInstrument()
        instrument.write(b"*TST?\n")
        assert instrument.read_available() == b"0\n"
        assert instrument.read_available() == b""


# ---------------------------------------------------------------------------
# Commands and queries
# ---------------------------------------------------------------------------


class TestRegistration:
    """Tests for registered commands, queries and settings."""

    def test_setting_short_and_long_forms(self) -> None:
        instrument = SimulatedInstrument()
        instrument.register_setting("SOURce:VOLTage", 0.0)
        instrument.write(b"SOURCE:VOLT 3.3\n")
        assert instrument.setting("SOURce:VOLTage") == 3.3
        assert _query(instrument, "SOUR:VOLTAGE?") == "3.3"

    def test_setting_on_off(self) -> None:
        instrument = SimulatedInstrument()
        instrument.register_setting("OUTPut", False)
        instrument.write(b"OUTP ON\n")
        assert _query(instrument, "OUTP?") == "1"

    def test_bad_value_queues_illegal_parameter(self) -> None:
        instrument = SimulatedInstrument()
        instrument.register_setting("VOLTage", 0.0)
        instrument.write(b'VOLT "high"\n')
        assert instrument.error_queue == ((-224, "Illegal parameter value"),)
        assert instrument.setting("VOLTage") == 0.0

    def test_numeric_suffix_defaults_to_one(self) -> None:
        instrument = SimulatedInstrument()
        instrument.register_setting("CHANnel1:SCALe", 1.0)
        instrument.write(b"CHAN:SCAL 2\n")
        assert instrument.setting("CHANnel1:SCALe") == 2
        instrument.write(b"CHAN2:SCAL 5\n")
        assert instrument.error_queue == ((-113, "Undefined header"),)

    @pytest.mark.parametrize(
        ("value", "expected"),
        [(42, "42"), (1.5, "1.5"), (True, "1"), (String("ok"), '"ok"'), ("raw,text", "raw,text")],
    )
    def test_query_response_encoding(self, value: object, expected: str) -> None:
        instrument = SimulatedInstrument()
        instrument.register_query("VALue", lambda params: value)
        assert _query(instrument, "VAL?") == expected

    def test_bytes_response_is_block(self) -> None:
        instrument = SimulatedInstrument()
        instrument.register_query("DATA", lambda params: b"xyz")
        instrument.write(b"DATA?\n")
        assert instrument.read_available() == b"#13xyz\n"

    def test_reset_restores_settings(self) -> None:
        instrument = SimulatedInstrument()
        instrument.register_setting("VOLTage", 1.0)
        instrument.write(b"VOLT 9\n")
        instrument.write(b"*RST\n")
        assert instrument.setting("VOLTage") == 1.0


# ---------------------------------------------------------------------------
# Error queue
# ---------------------------------------------------------------------------


class TestErrorQueue:
    """Tests for the SCPI error/event queue."""

    def test_undefined_header(self) -> None:
        instrument = SimulatedInstrument()
        instrument.write(b"BOGUS\n")
        assert instrument.error_queue == ((-113, "Undefined header"),)
        assert instrument.status_byte & 0x04
        assert instrument.event_status & 0x20

    def test_syntax_error(self) -> None:
        instrument = SimulatedInstrument()
        instrument.write(b"1BAD\n")
        assert instrument.error_queue == ((-102, "Syntax error"),)

    def test_drain_fifo(self) -> None:
        instrument = SimulatedInstrument()
        instrument.push_error(-100, "first")
        instrument.push_error(-200, "second")
        assert _query(instrument, "SYST:ERR?") == '-100,"first"'
        assert _query(instrument, "SYSTem:ERRor:NEXT?") == '-200,"second"'
        assert _query(instrument, "SYST:ERR?") == '0,"No error"'

    def test_overflow_replaces_last_entry(self) -> None:
        instrument = SimulatedInstrument(SimulatedInstrumentConfig(error_queue_size=2))
        for code in (-100, -200, -300):
            instrument.push_error(code, "err")
        assert instrument.error_queue == ((-100, "err"), (-350, "Queue overflow"))

    def test_query_interrupted(self) -> None:
        instrument = SimulatedInstrument()
        instrument.write(b"*IDN?\n")
        instrument.write(b"*TST?\n")
        assert instrument.read_until(b"\n") == b"0\n"
        assert instrument.error_queue == ((-410, "Query INTERRUPTED"),)
        assert instrument.event_status & 0x04

    def test_clear_status(self) -> None:
        instrument = SimulatedInstrument()
        instrument.push_error(-100, "err")
        instrument.write(b"*CLS\n")
        assert instrument.error_queue == ()
        assert instrument.event_status == 0


# ---------------------------------------------------------------------------
# Status registers
# ---------------------------------------------------------------------------


class TestStatus:
    """Tests for the status byte and enable registers."""

    def test_message_available(self) -> None:
        instrument = SimulatedInstrument()
        instrument.write(b"*IDN?\n")
        assert instrument.status_byte & 0x10

    def test_event_status_summary_needs_enable(self) -> None:
        instrument = SimulatedInstrument()
        instrument.push_error(-100, "err")
        assert not instrument.status_byte & 0x20
        instrument.write(b"*ESE 32\n")
        assert instrument.status_byte & 0x20

    def test_request_service(self) -> None:
        instrument = SimulatedInstrument()
        instrument.write(b"*ESE 32;*SRE 32\n")
        instrument.push_error(-100, "err")
        assert instrument.status_byte & 0x40

    def test_sre_ignores_bit_six(self) -> None:
        instrument = SimulatedInstrument()
        instrument.write(b"*SRE 255\n")
        assert _query(instrument, "*SRE?") == "191"

    def test_enable_out_of_range(self) -> None:
        instrument = SimulatedInstrument()
        instrument.write(b"*ESE 300\n")
        assert instrument.error_queue == ((-222, "Data out of range"),)

    def test_enable_missing_parameter(self) -> None:
        instrument = SimulatedInstrument()
        instrument.write(b"*ESE\n")
        assert instrument.error_queue == ((-109, "Missing parameter"),)

    def test_esr_read_clears(self) -> None:
        instrument = SimulatedInstrument()
        instrument.push_error(-200, "err")
        assert _query(instrument, "*ESR?") == "16"
        assert _query(instrument, "*ESR?") == "0"

    def test_scpi_status_registers(self) -> None:
        instrument = SimulatedInstrument()
        instrument.set_operation_events(0x10)
        instrument.set_questionable_events(0x01)
        assert instrument.status_byte & 0x88 == 0x88
        assert _query(instrument, "STAT:OPER?") == "16"
        assert _query(instrument, "STAT:OPER:EVEN?") == "0"
        instrument.write(b"STAT:PRES\n")
        assert _query(instrument, "STAT:QUES:ENAB?") == "0"
        assert not instrument.status_byte & 0x08
        assert _query(instrument, "STAT:QUES?") == "1"

    def test_condition_latches_rising_edges(self) -> None:
        instrument = SimulatedInstrument()
        instrument.set_operation_condition(0x10)
        assert _query(instrument, "STAT:OPER:COND?") == "16"
        assert _query(instrument, "STAT:OPER?") == "16"
        instrument.set_operation_condition(0x10)
        assert _query(instrument, "STAT:OPER?") == "0"
        instrument.set_operation_condition(0)
        assert _query(instrument, "STATUS:OPERATION:CONDITION?") == "0"
        assert _query(instrument, "STAT:OPER:EVEN?") == "0"

    def test_scpi_enable_masks_summary(self) -> None:
        instrument = SimulatedInstrument()
        assert _query(instrument, "STAT:QUES:ENAB?") == "32767"
        instrument.write(b"STAT:OPER:ENAB 1\n")
        instrument.set_operation_events(0x10)
        assert not instrument.status_byte & 0x80
        instrument.write(b"STAT:OPER:ENAB 16\n")
        assert instrument.status_byte & 0x80

    @pytest.mark.parametrize(
        ("message", "error"),
        [
            (b"STAT:OPER:ENAB 70000\n", (-222, "Data out of range")),
            (b"STAT:OPER:ENAB -1\n", (-222, "Data out of range")),
            (b"*ESE NAN\n", (-222, "Data out of range")),
            (b"STAT:QUES:ENAB\n", (-109, "Missing parameter")),
            (b'*SRE "16"\n', (-109, "Missing parameter")),
        ],
    )
    def test_register_value_errors(self, message: bytes, error: tuple[int, str]) -> None:
        instrument = SimulatedInstrument()
        instrument.write(message)
        assert instrument.error_queue == (error,)

    def test_system_version(self) -> None:
        assert _query(SimulatedInstrument(), "SYST:VERS?") == "1999.0"


# ---------------------------------------------------------------------------
# Optional common commands
# ---------------------------------------------------------------------------


class TestOptionalCommonCommands:
    """Tests for the optional IEEE 488.2 common commands."""

    def test_options(self) -> None:
        config = SimulatedInstrumentConfig(options=("GPIB", "MEM 2M"))
        assert _query(SimulatedInstrument(config), "*OPT?") == "GPIB,MEM 2M"
        assert _query(SimulatedInstrument(), "*OPT?") == "0"

    def test_trigger(self) -> None:
        instrument = SimulatedInstrument()
        instrument.write(b"*TRG;*TRG\n")
        assert instrument.trigger_count == 2

    def test_calibration_result(self) -> None:
        config = SimulatedInstrumentConfig(calibration_result=3)
        assert _query(SimulatedInstrument(config), "*CAL?") == "3"

    def test_save_and_recall(self) -> None:
        instrument = SimulatedInstrument()
        instrument.register_setting("VOLTage", 1.0)
        instrument.write(b"VOLT 2;*SAV 4;VOLT 3\n")
        instrument.write(b"*RCL 4\n")
        assert instrument.setting("VOLTage") == 2
        instrument.write(b"*SDS 4;*RCL 4\n")
        assert instrument.setting("VOLTage") == 1.0
        assert instrument.error_queue == ()

    def test_recall_empty_register(self) -> None:
        instrument = SimulatedInstrument()
        instrument.write(b"*RCL 2\n")
        assert instrument.error_queue == ((-221, "Settings conflict"),)

    def test_save_register_out_of_range(self) -> None:
        instrument = SimulatedInstrument(SimulatedInstrumentConfig(saved_setting_slots=2))
        instrument.write(b"*SAV 2\n")
        assert instrument.error_queue == ((-222, "Data out of range"),)

    def test_power_on_clears_enables(self) -> None:
        instrument = SimulatedInstrument()
        instrument.register_setting("VOLTage", 1.0)
        instrument.write(b"*ESE 32;*SRE 16;*PRE 8;VOLT 5\n")
        instrument.push_error(-100, "err")
        instrument.power_on()
        assert _query(instrument, "*ESE?") == "0"
        assert _query(instrument, "*PRE?") == "0"
        assert _query(instrument, "*ESR?") == "128"
        assert instrument.setting("VOLTage") == 1.0
        assert instrument.error_queue == ()

    def test_power_on_keeps_enables_without_psc(self) -> None:
        instrument = SimulatedInstrument()
        instrument.write(b"*PSC 0;*ESE 128;*SRE 32\n")
        assert _query(instrument, "*PSC?") == "0"
        instrument.power_on()
        assert _query(instrument, "*ESE?") == "128"
        assert _query(instrument, "*SRE?") == "32"
        assert instrument.status_byte & 0x60 == 0x60

    def test_individual_status(self) -> None:
        instrument = SimulatedInstrument()
        instrument.write(b"*PRE 8\n")
        assert _query(instrument, "*IST?") == "0"
        instrument.set_questionable_events(0x01)
        assert _query(instrument, "*IST?") == "1"

    def test_protected_user_data(self) -> None:
        instrument = SimulatedInstrument()
        assert _query(instrument, "*PUD?") == "#10"
        instrument.write(b"*PUD #15cal 1\n")
        assert _query(instrument, "*PUD?") == "#15cal 1"
        instrument.write(b'*PUD "lab"\n')
        assert _query(instrument, "*PUD?") == "#13lab"

    def test_protected_user_data_needs_value(self) -> None:
        instrument = SimulatedInstrument()
        instrument.write(b"*PUD 5\n")
        assert instrument.error_queue == ((-109, "Missing parameter"),)


# ---------------------------------------------------------------------------
# Macros
# ---------------------------------------------------------------------------


def _macro_instrument() -> SimulatedInstrument:
    instrument = SimulatedInstrument()
    instrument.register_setting("VOLTage", 0.0)
    instrument.register_setting("OUTPut", False)
    instrument.write(b'*DMC "SETVOLT",#215VOLT $1;OUTP ON\n')
    return instrument


class TestMacros:
    """Tests for macro definition and expansion."""

    def test_defined_macro_disabled_until_enabled(self) -> None:
        instrument = _macro_instrument()
        assert _query(instrument, "*EMC?") == "0"
        instrument.write(b"SETVOLT 2.5\n")
        assert instrument.error_queue == ((-113, "Undefined header"),)

    def test_expansion_substitutes_parameters(self) -> None:
        instrument = _macro_instrument()
        instrument.write(b"*EMC 1\n")
        instrument.write(b"setvolt 2.5\n")
        assert instrument.setting("VOLTage") == 2.5
        assert instrument.setting("OUTPut") is True
        assert instrument.error_queue == ()

    def test_query_macro(self) -> None:
        instrument = SimulatedInstrument()
        instrument.write(b'*DMC "WHO?",#15*IDN?;*EMC 1\n')
        assert _query(instrument, "WHO?") == "HWTEST,SIM488,SN000001,1.0"

    def test_list_and_get(self) -> None:
        instrument = _macro_instrument()
        assert _query(instrument, "*LMC?") == '"SETVOLT"'
        assert _query(instrument, '*GMC? "setvolt"') == "#215VOLT $1;OUTP ON"
        assert instrument.macros == {"SETVOLT": b"VOLT $1;OUTP ON"}

    def test_list_empty(self) -> None:
        assert _query(SimulatedInstrument(), "*LMC?") == '""'

    def test_get_unknown(self) -> None:
        instrument = SimulatedInstrument()
        instrument.write(b'*GMC? "NONE"\n')
        assert instrument.error_queue == ((-224, "Illegal parameter value"),)

    def test_remove_and_purge(self) -> None:
        instrument = _macro_instrument()
        instrument.write(b'*DMC "OFF",#16OUTP 0\n')
        instrument.write(b'*RMC "SETVOLT"\n')
        assert list(instrument.macros) == ["OFF"]
        instrument.write(b"*PMC\n")
        assert instrument.macros == {}

    def test_remove_unknown(self) -> None:
        instrument = SimulatedInstrument()
        instrument.write(b'*RMC "NONE"\n')
        assert instrument.error_queue == ((-224, "Illegal parameter value"),)

    @pytest.mark.parametrize("label", ['"*RST"', '""', '"A B"'])
    def test_bad_label(self, label: str) -> None:
        instrument = SimulatedInstrument()
        instrument.write(f"*DMC {label},#10\n".encode("ascii"))
        assert instrument.error_queue == ((-224, "Illegal parameter value"),)

    def test_reset_disables_macros(self) -> None:
        instrument = _macro_instrument()
        instrument.write(b"*EMC 1;*RST\n")
        assert _query(instrument, "*EMC?") == "0"
        assert "SETVOLT" in instrument.macros


# ---------------------------------------------------------------------------
# Overlapped operations
# ---------------------------------------------------------------------------


class TestOperations:
    """Tests for overlapped operations and operation-complete handling."""

    def test_opc_bit_after_polls(self) -> None:
        instrument = SimulatedInstrument()
        instrument.start_operation(2)
        instrument.write(b"*OPC\n")
        assert _query(instrument, "*ESR?") == "0"
        assert _query(instrument, "*ESR?") == "1"
        assert not instrument.busy

    def test_opc_when_idle(self) -> None:
        instrument = SimulatedInstrument()
        instrument.write(b"*OPC\n")
        assert instrument.event_status == 1

    def test_opc_query_released_by_read(self) -> None:
        instrument = SimulatedInstrument()
        instrument.start_operation(5)
        assert _query(instrument, "*OPC?") == "1"

    def test_never_completing_operation(self) -> None:
        instrument = SimulatedInstrument()
        instrument.start_operation(None)
        instrument.write(b"*OPC?\n")
        with pytest.raises(TransportTimeout):
            instrument.read_until(b"\n")
        assert instrument.busy

    def test_registered_operation(self) -> None:
        instrument = SimulatedInstrument()
        instrument.register_command("INITiate", operation_polls=2)
        instrument.write(b"INIT\n")
        assert instrument.busy
        instrument.write(b"*WAI\n")
        assert not instrument.busy

    def test_poll_count(self) -> None:
        instrument = SimulatedInstrument()
        _query(instrument, "*STB?")
        _query(instrument, "*ESR?")
        assert instrument.poll_count == 2


# ---------------------------------------------------------------------------
# Connection and bus services
# ---------------------------------------------------------------------------


class TestConnection:
    """Tests for disconnection and the GPIB-style bus services."""

    def test_disconnect(self) -> None:
        instrument = SimulatedInstrument()
        instrument.disconnect()
        with pytest.raises(ConnectionLost):
            instrument.write(b"*IDN?\n")

    def test_serial_poll(self) -> None:
        instrument = SimulatedGpibInstrument()
        instrument.start_operation(1)
        instrument.write(b"*OPC?\n")
        assert instrument.serial_poll() & 0x10
        assert instrument.read_until(b"\n") == b"1\n"
        assert instrument.poll_count == 1

    def test_device_clear_drops_pending_response(self) -> None:
        instrument = SimulatedGpibInstrument()
        instrument.start_operation(None)
        instrument.write(b"*OPC?\n")
        instrument.device_clear()
        instrument.write(b"*TST?\n")
        assert instrument.read_until(b"\n") == b"0\n"
        assert instrument.error_queue == ()
