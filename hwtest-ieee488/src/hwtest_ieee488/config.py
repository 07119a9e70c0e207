"""Session configuration and YAML loading.

All timing and framing values the IEEE 488.2 standard leaves to the
instrument (terminators, timeouts, enable masks) are configurable defaults
rather than constants, since individual instruments document deviations.

Example YAML configuration:
    session:
      write_terminator: "\\n"
      read_terminator: "\\n"
      timeout: 10.0
      poll_interval: 0.05
      error_queue_limit: 100
      completion_method: query
      mnemonic_form: short
      event_status_enable: 0x3C
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, fields
from enum import Enum
from pathlib import Path
from typing import Any

import yaml

from hwtest_ieee488.builder import MnemonicForm


class CompletionMethod(Enum):
    """How :meth:`Session.wait_operation_complete` synchronizes.

    Attributes:
        QUERY: Send ``*OPC?`` and wait for the ``1`` response.
        POLL: Send ``*OPC`` and poll ``*ESR?`` for the OPC bit.
    """

    QUERY = "query"
    POLL = "poll"


@dataclass(frozen=True)
class SessionConfig:
    """Configuration for a :class:`~hwtest_ieee488.session.Session`.

    Attributes:
        write_terminator: Program message terminator.
        read_terminator: Response message terminator.
        timeout: Default operation-complete timeout in seconds.
        poll_interval: Seconds between completion polls.
        error_queue_limit: Maximum ``SYST:ERR?`` queries per drain.
        check_errors: Check status and drain the error queue after every
            command and query.
        completion_method: Default operation-complete strategy.
        mnemonic_form: Keyword rendering for structured commands.
        max_parameters: Parameter limit per command, or ``None``.
        use_serial_poll: Prefer a hardware serial poll over ``*STB?`` when
            the transport supports one.
        event_status_enable: ``*ESE`` mask written by
            :meth:`Session.initialize`. The default enables the four error
            bits so they are summarized in ESB.
        service_request_enable: ``*SRE`` mask written by
            :meth:`Session.initialize`.
        ieee_sentinels: Map 9.91E37 / ±9.9E37 responses to NaN / ±inf.
        block_terminated: Read the response terminator after a definite
            block payload.

    Raises:
        ValueError: If any value is out of range.
    """

    write_terminator: str = "\n"
    read_terminator: str = "\n"
    timeout: float = 10.0
    poll_interval: float = 0.1
    error_queue_limit: int = 100
    check_errors: bool = True
    completion_method: CompletionMethod = CompletionMethod.QUERY
    mnemonic_form: MnemonicForm = MnemonicForm.AS_GIVEN
    max_parameters: int | None = None
    use_serial_poll: bool = True
    event_status_enable: int = 0x3C
    service_request_enable: int = 0
    ieee_sentinels: bool = False
    block_terminated: bool = True

    def __post_init__(self) -> None:
        """Validate configuration parameters.

        Raises:
            ValueError: If any configuration parameter is invalid.
        """
        if not self.write_terminator:
            raise ValueError("write_terminator must not be empty")
        if not self.read_terminator:
            raise ValueError("read_terminator must not be empty")
        if self.timeout <= 0:
            raise ValueError(f"timeout must be > 0, got {self.timeout}")
        if self.poll_interval <= 0:
            raise ValueError(f"poll_interval must be > 0, got {self.poll_interval}")
        if self.error_queue_limit < 1:
            raise ValueError(f"error_queue_limit must be >= 1, got {self.error_queue_limit}")
        if self.max_parameters is not None and self.max_parameters < 0:
            raise ValueError(f"max_parameters must be >= 0, got {self.max_parameters}")
        if not 0 <= self.event_status_enable <= 0xFF:
            raise ValueError(
                f"event_status_enable must be 0-255, got {self.event_status_enable}"
            )
        if not 0 <= self.service_request_enable <= 0xFF:
            raise ValueError(
                f"service_request_enable must be 0-255, got {self.service_request_enable}"
            )

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> SessionConfig:
        """Build a configuration from a mapping.

        Enum fields accept their string values (``"poll"``, ``"short"``).
        Missing keys keep their defaults.

        Args:
            data: Mapping of field names to values.

        Returns:
            A SessionConfig instance.

        Raises:
            ValueError: If a key is unknown or a value is invalid.
        """
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ValueError(f"Unknown session config field(s): {', '.join(unknown)}")

        kwargs: dict[str, Any] = dict(data)
        if "completion_method" in kwargs:
            kwargs["completion_method"] = CompletionMethod(kwargs["completion_method"])
        if "mnemonic_form" in kwargs:
            kwargs["mnemonic_form"] = MnemonicForm(kwargs["mnemonic_form"])
        for name in ("timeout", "poll_interval"):
            if name in kwargs:
                kwargs[name] = float(kwargs[name])
        return cls(**kwargs)


def load_session_config(path: str | Path) -> SessionConfig:
    """Load session configuration from a YAML file.

    The file must be a mapping with an optional ``session`` section; an
    absent section yields the defaults.

    Args:
        path: Path to the YAML configuration file.

    Returns:
        Parsed session configuration.

    Raises:
        FileNotFoundError: If the config file doesn't exist.
        ValueError: If the config is invalid.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f)

    if not isinstance(data, dict):
        raise ValueError("Config must be a YAML mapping")

    section = data.get("session") or {}
    if not isinstance(section, dict):
        raise ValueError("session must be a mapping")
    return SessionConfig.from_dict(section)
