"""Command builder for IEEE 488.2 program messages.

This module provides the structured command model and the builder that
turns it into program message bytes:

- :class:`Segment` / :class:`MnemonicPath`: immutable command-tree paths
  (``SOURce:VOLTage``, ``CHANnel2:SCALe``, ``*RST``)
- :class:`Command`: a path, a set/query flag and an ordered parameter list
- :class:`CommandBuilder`: encodes one or more commands into a terminated
  program message
- :func:`parse_program_message`: the inverse, used by the simulated
  instrument

Typical usage::

    from hwtest_ieee488.builder import Command, CommandBuilder

    builder = CommandBuilder()
    builder.build_message([Command.set("VOLT", 5.0), Command.query("*OPC")])
    # b"VOLT 5.0;*OPC?\\n"
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from enum import Enum

from hwtest_ieee488.codec import (
    Parameter,
    ValueKind,
    decode,
    encode,
    split_data,
    to_parameter,
)
from hwtest_ieee488.errors import InvalidMnemonic, TooManyParameters

# A trailing digit belongs to the numeric suffix, never to the keyword.
_KEYWORD = r"[A-Za-z](?:[A-Za-z0-9_]*[A-Za-z_])?"
_KEYWORD_RE = re.compile(rf"^{_KEYWORD}$")
_SEGMENT_RE = re.compile(rf"^(?P<keyword>{_KEYWORD})(?P<suffix>\d+)?$")


class CommandKind(Enum):
    """Whether a command sets state or queries it."""

    SET = "set"
    QUERY = "query"


class MnemonicForm(Enum):
    """How the builder renders path keywords."""

    AS_GIVEN = "as_given"
    SHORT = "short"
    LONG = "long"


@dataclass(frozen=True)
class Segment:
    """One node of a command-tree path.

    Attributes:
        keyword: The keyword in SCPI mixed case; upper-case letters mark the
            short form (``"CHANnel"`` has short form ``"CHAN"``).
        suffix: Optional numeric suffix (``CHANnel2``). Must be >= 0.

    A keyword cannot end in a digit: write ``Segment("CH", 1)`` rather than
    ``Segment("CH1")``.
    """

    keyword: str
    suffix: int | None = None

    def __post_init__(self) -> None:
        if not self.keyword:
            raise InvalidMnemonic("Path segment must not be empty")
        if _KEYWORD_RE.match(self.keyword) is None:
            raise InvalidMnemonic(f"Invalid path segment: {self.keyword!r}")
        if self.suffix is not None:
            if isinstance(self.suffix, bool) or not isinstance(self.suffix, int):
                raise InvalidMnemonic(f"Segment suffix must be an int, got {self.suffix!r}")
            if self.suffix < 0:
                raise InvalidMnemonic(f"Segment suffix must be non-negative, got {self.suffix}")

    @classmethod
    def parse(cls, text: str) -> Segment:
        """Parse ``"CHANnel2"`` style text into a segment.

        Raises:
            InvalidMnemonic: If *text* is empty or has disallowed characters.
        """
        match = _SEGMENT_RE.match(text)
        if match is None:
            raise InvalidMnemonic(f"Invalid path segment: {text!r}")
        suffix = match.group("suffix")
        return cls(match.group("keyword"), int(suffix) if suffix is not None else None)

    @property
    def short(self) -> str:
        """Short-form keyword (upper-case letters of a mixed-case keyword)."""
        if self.keyword.isupper() or self.keyword.islower():
            return self.keyword.upper()
        return "".join(c for c in self.keyword if not c.islower())

    @property
    def long(self) -> str:
        """Long-form keyword."""
        return self.keyword.upper()

    def render(self, form: MnemonicForm = MnemonicForm.AS_GIVEN) -> str:
        """Render the segment in the requested form, including its suffix."""
        if form is MnemonicForm.SHORT:
            text = self.short
        elif form is MnemonicForm.LONG:
            text = self.long
        else:
            text = self.keyword
        return text if self.suffix is None else f"{text}{self.suffix}"

    def accepts(self, received: Segment) -> bool:
        """Return True if *received* names this node.

        The short or long form is accepted in any case, and an omitted
        suffix is the same as suffix 1.
        """
        if received.keyword.upper() not in (self.short, self.long):
            return False
        mine = 1 if self.suffix is None else self.suffix
        theirs = 1 if received.suffix is None else received.suffix
        return mine == theirs


@dataclass(frozen=True)
class MnemonicPath:
    """An immutable command-tree path.

    Attributes:
        segments: Ordered path segments.
        rooted: True if the path is anchored at the tree root (leading ``:``).
        common: True for IEEE 488.2 common commands (``*RST``).
    """

    segments: tuple[Segment, ...]
    rooted: bool = False
    common: bool = False

    def __post_init__(self) -> None:
        if not isinstance(self.segments, tuple):
            object.__setattr__(self, "segments", tuple(self.segments))
        if not self.segments:
            raise InvalidMnemonic("Mnemonic path must have at least one segment")
        if self.common and (len(self.segments) != 1 or self.rooted):
            raise InvalidMnemonic("Common command paths have exactly one unrooted segment")

    @classmethod
    def parse(cls, text: str) -> MnemonicPath:
        """Parse a textual path such as ``":SOUR:VOLT"`` or ``"*RST"``.

        Raises:
            InvalidMnemonic: If any segment is empty or malformed.
        """
        text = text.strip()
        if not text:
            raise InvalidMnemonic("Mnemonic path must not be empty")
        if text.startswith("*"):
            keyword = text[1:]
            if not keyword or _KEYWORD_RE.match(keyword) is None:
                raise InvalidMnemonic(f"Invalid common command: {text!r}")
            return cls((Segment(keyword),), common=True)
        rooted = text.startswith(":")
        body = text[1:] if rooted else text
        parts = body.split(":")
        if any(not part for part in parts):
            raise InvalidMnemonic(f"Empty segment in path: {text!r}")
        return cls(tuple(Segment.parse(part) for part in parts), rooted=rooted)

    @classmethod
    def of(cls, path: str | MnemonicPath) -> MnemonicPath:
        """Return *path* unchanged, or parse it if it is a string."""
        if isinstance(path, MnemonicPath):
            return path
        return cls.parse(path)

    def render(self, form: MnemonicForm = MnemonicForm.AS_GIVEN) -> str:
        """Render the path as program header text (without query marker)."""
        body = ":".join(segment.render(form) for segment in self.segments)
        if self.common:
            return "*" + body
        return ":" + body if self.rooted else body

    def child(self, segment: str | Segment) -> MnemonicPath:
        """Return a new path with *segment* appended."""
        if self.common:
            raise InvalidMnemonic("Common commands have no children")
        if isinstance(segment, str):
            segment = Segment.parse(segment)
        return MnemonicPath(self.segments + (segment,), rooted=self.rooted)

    def accepts(self, received: MnemonicPath) -> bool:
        """Return True if *received* addresses the same command-tree node.

        The root anchor is not compared; a chained unit may carry one the
        original header did not.
        """
        if received.common != self.common or len(received.segments) != len(self.segments):
            return False
        return all(mine.accepts(theirs) for mine, theirs in zip(self.segments, received.segments))

    def __str__(self) -> str:
        return self.render()


@dataclass(frozen=True)
class Command:
    """A program message unit: path, set/query flag and parameters."""

    path: MnemonicPath
    kind: CommandKind = CommandKind.SET
    parameters: tuple[Parameter, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        if not isinstance(self.parameters, tuple):
            object.__setattr__(self, "parameters", tuple(self.parameters))

    @classmethod
    def set(cls, path: str | MnemonicPath, *parameters: object) -> Command:
        """Build a set command, coercing plain Python parameter values."""
        return cls(
            MnemonicPath.of(path),
            CommandKind.SET,
            tuple(to_parameter(p) for p in parameters),
        )

    @classmethod
    def query(cls, path: str | MnemonicPath, *parameters: object) -> Command:
        """Build a query, coercing plain Python parameter values.

        A trailing ``?`` on a string path is accepted and dropped.
        """
        if isinstance(path, str):
            path = path.strip().removesuffix("?")
        return cls(
            MnemonicPath.of(path),
            CommandKind.QUERY,
            tuple(to_parameter(p) for p in parameters),
        )

    @property
    def is_query(self) -> bool:
        """True if this command expects a response."""
        return self.kind is CommandKind.QUERY

    def accepts(self, received: Command) -> bool:
        """Return True if *received* is this command as an instrument parsed it.

        Parameters are compared by their encoded form, since decoding cannot
        tell ``Boolean(True)`` from ``Numeric(1)``.

        Args:
            received: A command recovered with :func:`parse_program_message`.
        """
        if received.kind is not self.kind or not self.path.accepts(received.path):
            return False
        if len(received.parameters) != len(self.parameters):
            return False
        return all(
            encode(mine) == encode(theirs)
            for mine, theirs in zip(self.parameters, received.parameters)
        )


class CommandBuilder:
    """Encodes commands into terminated program messages.

    Args:
        terminator: Program message terminator appended once per message.
        form: Keyword rendering (as given, short or long form).
        max_parameters: Hard limit on parameters per command, or ``None``.
    """

    def __init__(
        self,
        terminator: str = "\n",
        *,
        form: MnemonicForm = MnemonicForm.AS_GIVEN,
        max_parameters: int | None = None,
    ) -> None:
        if not terminator:
            raise ValueError("terminator must be non-empty")
        if max_parameters is not None and max_parameters < 0:
            raise ValueError("max_parameters must be >= 0")
        self._terminator = terminator.encode("ascii")
        self._form = form
        self._max_parameters = max_parameters

    @property
    def terminator(self) -> bytes:
        """The program message terminator."""
        return self._terminator

    def build(
        self,
        path: str | MnemonicPath,
        kind: CommandKind = CommandKind.SET,
        parameters: Sequence[object] = (),
    ) -> bytes:
        """Build a single-command program message.

        Raises:
            InvalidMnemonic: If the path is malformed.
            TooManyParameters: If the parameter limit is exceeded.
        """
        command = Command(
            MnemonicPath.of(path), kind, tuple(to_parameter(p) for p in parameters)
        )
        return self.build_message([command])

    def build_message(self, commands: Iterable[Command]) -> bytes:
        """Join *commands* with ``;`` into one terminated program message.

        Non-common commands after the first are emitted root-anchored so each
        resolves from the top of the command tree.

        Raises:
            ValueError: If *commands* is empty.
            TooManyParameters: If any command exceeds the parameter limit.
        """
        units = [
            self.encode_unit(command, first=index == 0)
            for index, command in enumerate(commands)
        ]
        if not units:
            raise ValueError("A program message needs at least one command")
        return b";".join(units) + self._terminator

    def encode_unit(self, command: Command, *, first: bool = True) -> bytes:
        """Encode one program message unit without a terminator."""
        count = len(command.parameters)
        if self._max_parameters is not None and count > self._max_parameters:
            raise TooManyParameters(
                f"{command.path} has {count} parameters; limit is {self._max_parameters}"
            )
        header = command.path.render(self._form)
        if not first and not command.path.common and not command.path.rooted:
            header = ":" + header
        if command.is_query:
            header += "?"
        unit = header.encode("ascii")
        if command.parameters:
            unit += b" " + b",".join(encode(p) for p in command.parameters)
        return unit


def parse_program_message(data: bytes, terminator: bytes = b"\n") -> list[Command]:
    """Parse a program message back into commands.

    Args:
        data: Message bytes, with or without the terminator.
        terminator: Terminator to strip from the end.

    Returns:
        The commands in message order. Blank units are skipped.

    Raises:
        InvalidMnemonic: If a header is malformed.
        MalformedValue: If a parameter cannot be decoded.
    """
    if data.endswith(terminator):
        data = data[: -len(terminator)]
    data = data.removesuffix(b"\r")
    commands: list[Command] = []
    for unit in split_data(data, b";"):
        # Only leading whitespace is dropped; a block payload may end in any byte.
        unit = unit.lstrip()
        if not unit:
            continue
        header_bytes, *rest_parts = unit.split(None, 1)
        rest = rest_parts[0] if rest_parts else b""
        header = header_bytes.decode("ascii", "replace")
        kind = CommandKind.SET
        if header.endswith("?"):
            kind = CommandKind.QUERY
            header = header[:-1]
        parameters = tuple(
            decode(piece, ValueKind.ANY) for piece in split_data(rest.lstrip(), b",")
        )
        commands.append(Command(MnemonicPath.parse(header), kind, parameters))
    return commands
