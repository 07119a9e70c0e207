"""Tests for session configuration and YAML loading."""

from __future__ import annotations

from pathlib import Path

import pytest

from hwtest_ieee488.builder import MnemonicForm
from hwtest_ieee488.config import CompletionMethod, SessionConfig, load_session_config


class TestSessionConfig:
    """Tests for SessionConfig defaults and validation."""

    def test_defaults(self) -> None:
        config = SessionConfig()
        assert config.write_terminator == "\n"
        assert config.timeout == 10.0
        assert config.error_queue_limit == 100
        assert config.completion_method is CompletionMethod.QUERY
        assert config.event_status_enable == 0x3C
        assert config.check_errors

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"write_terminator": ""},
            {"read_terminator": ""},
            {"timeout": 0},
            {"poll_interval": -0.1},
            {"error_queue_limit": 0},
            {"max_parameters": -1},
            {"event_status_enable": 256},
            {"service_request_enable": -1},
        ],
    )
    def test_invalid_values(self, kwargs: dict[str, object]) -> None:
        with pytest.raises(ValueError):
            SessionConfig(**kwargs)  # type: ignore[arg-type]

    def test_from_dict_converts_enums(self) -> None:
        config = SessionConfig.from_dict({"completion_method": "poll", "mnemonic_form": "short"})
        assert config.completion_method is CompletionMethod.POLL
        assert config.mnemonic_form is MnemonicForm.SHORT

    def test_from_dict_casts_times(self) -> None:
        config = SessionConfig.from_dict({"timeout": 3, "poll_interval": 1})
        assert isinstance(config.timeout, float)
        assert config.poll_interval == 1.0

    def test_from_dict_unknown_key(self) -> None:
        with pytest.raises(ValueError, match="baud"):
            SessionConfig.from_dict({"baud": 9600})

    def test_from_dict_bad_enum(self) -> None:
        with pytest.raises(ValueError):
            SessionConfig.from_dict({"completion_method": "interrupt"})


class TestLoadSessionConfig:
    """Tests for load_session_config."""

    def test_full_file(self, tmp_path: Path) -> None:
        path = tmp_path / "session.yaml"
        path.write_text(
            "session:\n"
            "  read_terminator: \"\\r\\n\"\n"
            "  timeout: 2.5\n"
            "  completion_method: poll\n"
            "  event_status_enable: 0x24\n"
            "  use_serial_poll: false\n",
            encoding="utf-8",
        )
        config = load_session_config(path)
        assert config.read_terminator == "\r\n"
        assert config.timeout == 2.5
        assert config.completion_method is CompletionMethod.POLL
        assert config.event_status_enable == 0x24
        assert not config.use_serial_poll

    def test_missing_section_gives_defaults(self, tmp_path: Path) -> None:
        path = tmp_path / "session.yaml"
        path.write_text("other: 1\n", encoding="utf-8")
        assert load_session_config(str(path)) == SessionConfig()

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            load_session_config(tmp_path / "absent.yaml")

    def test_not_a_mapping(self, tmp_path: Path) -> None:
        path = tmp_path / "session.yaml"
        path.write_text("- a\n- b\n", encoding="utf-8")
        with pytest.raises(ValueError, match="YAML mapping"):
            load_session_config(path)

    def test_section_not_a_mapping(self, tmp_path: Path) -> None:
        path = tmp_path / "session.yaml"
        path.write_text("session: fast\n", encoding="utf-8")
        with pytest.raises(ValueError, match="session must be a mapping"):
            load_session_config(path)
