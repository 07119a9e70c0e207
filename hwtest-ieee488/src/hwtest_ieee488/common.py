"""IEEE 488.2 common commands and SCPI mandatory commands.

The headers below are sent verbatim by :class:`~hwtest_ieee488.session.Session`
and recognized by the simulated instrument.
"""

from __future__ import annotations

from dataclasses import dataclass

# IEEE 488.2 mandatory common commands (IEEE 488.2 10.x)
CLS = "*CLS"
ESE = "*ESE"
ESE_QUERY = "*ESE?"
ESR_QUERY = "*ESR?"
IDN_QUERY = "*IDN?"
OPC = "*OPC"
OPC_QUERY = "*OPC?"
RST = "*RST"
SRE = "*SRE"
SRE_QUERY = "*SRE?"
STB_QUERY = "*STB?"
TST_QUERY = "*TST?"
WAI = "*WAI"

MANDATORY_COMMANDS: frozenset[str] = frozenset(
    {
        CLS,
        ESE,
        ESE_QUERY,
        ESR_QUERY,
        IDN_QUERY,
        OPC,
        OPC_QUERY,
        RST,
        SRE,
        SRE_QUERY,
        STB_QUERY,
        TST_QUERY,
        WAI,
    }
)

# IEEE 488.2 optional common commands (IEEE 488.2 10.x). Which of these an
# instrument implements is listed in its documentation.
CAL_QUERY = "*CAL?"
DMC = "*DMC"
EMC = "*EMC"
EMC_QUERY = "*EMC?"
GMC_QUERY = "*GMC?"
IST_QUERY = "*IST?"
LMC_QUERY = "*LMC?"
OPT_QUERY = "*OPT?"
PMC = "*PMC"
PRE = "*PRE"
PRE_QUERY = "*PRE?"
PSC = "*PSC"
PSC_QUERY = "*PSC?"
PUD = "*PUD"
PUD_QUERY = "*PUD?"
RCL = "*RCL"
RMC = "*RMC"
SAV = "*SAV"
SDS = "*SDS"
TRG = "*TRG"

# SCPI 1999.0 mandatory subsystem queries (SCPI 4.2)
SYSTEM_ERROR_QUERY = ":SYST:ERR?"
SYSTEM_VERSION_QUERY = ":SYST:VERS?"
STATUS_OPERATION_QUERY = ":STAT:OPER?"
STATUS_QUESTIONABLE_QUERY = ":STAT:QUES?"
STATUS_OPERATION_CONDITION_QUERY = ":STAT:OPER:COND?"
STATUS_OPERATION_ENABLE = ":STAT:OPER:ENAB"
STATUS_OPERATION_ENABLE_QUERY = ":STAT:OPER:ENAB?"
STATUS_QUESTIONABLE_CONDITION_QUERY = ":STAT:QUES:COND?"
STATUS_QUESTIONABLE_ENABLE = ":STAT:QUES:ENAB"
STATUS_QUESTIONABLE_ENABLE_QUERY = ":STAT:QUES:ENAB?"
STATUS_PRESET = ":STAT:PRES"


@dataclass(frozen=True)
class InstrumentIdentity:
    """Instrument identification from the ``*IDN?`` response.

    Attributes:
        manufacturer: Instrument manufacturer name (e.g., "B&K Precision").
        model: Instrument model number or name (e.g., "9115").
        serial: Serial number string; empty if the instrument reports ``0``.
        firmware: Firmware or hardware version string; empty if ``0``.
    """

    manufacturer: str
    model: str
    serial: str
    firmware: str


def parse_idn_response(response: str) -> InstrumentIdentity:
    """Parse an ``*IDN?`` response into an :class:`InstrumentIdentity`.

    The standard ``*IDN?`` response format is four comma-separated fields::

        manufacturer,model,serial_number,firmware_version

    Extra fields are joined into the firmware string. A field reported as
    ``0`` means "not available" (IEEE 488.2 10.14) and is returned empty.

    Args:
        response: The ``*IDN?`` response text, terminator removed.

    Returns:
        Parsed identity.

    Raises:
        ValueError: If the response has fewer than four fields.
    """
    parts = [p.strip() for p in response.split(",")]
    if len(parts) < 4:
        raise ValueError(
            f"Expected at least 4 comma-separated fields in *IDN? response, "
            f"got {len(parts)}: {response!r}"
        )

    def _field(value: str) -> str:
        return "" if value == "0" else value

    return InstrumentIdentity(
        manufacturer=parts[0],
        model=parts[1],
        serial=_field(parts[2]),
        firmware=_field(",".join(parts[3:])),
    )
