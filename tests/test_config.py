from pathlib import Path

import pytest

from fadecandy_client.config import (
    CONFIG_VERSION,
    MIN_SUPPORTED_CONFIG_VERSION,
    Config,
)


def test_default_config_passes_validation() -> None:
    config = Config()
    assert config.config_version == CONFIG_VERSION
    assert config.request_timeout == 4.0
    assert config.listen == ("127.0.0.1", 7890)


@pytest.mark.parametrize(
    "field,value,error",
    [
        ("request_timeout", 0.0, "request_timeout"),
        ("listen_port", 70000, "listen_port"),
        ("server_url", "http://127.0.0.1:7890", "server_url"),
        ("log_format", "xml", "log_format"),
        ("connection_log_level", "LOUD", "connection_log_level"),
        ("whitepoint", (1.0, 1.0), "whitepoint"),
    ],
)
def test_bounds_enforced(field: str, value: object, error: str) -> None:
    with pytest.raises(ValueError, match=error):
        Config(**{field: value})


def test_future_config_version_rejected() -> None:
    with pytest.raises(ValueError, match="newer than supported"):
        Config(config_version=CONFIG_VERSION + 1)


def test_ancient_config_version_rejected() -> None:
    with pytest.raises(ValueError, match="too old"):
        Config(config_version=MIN_SUPPORTED_CONFIG_VERSION - 1)


def test_sources_apply_in_order(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    path = tmp_path / "fadecandy.toml"
    path.write_text(
        'server-url = "ws://10.0.0.5:7890"\n'
        "request_timeout = 2\n"
        "gamma = 2.2\n"
        "whitepoint = [0.9, 1.0, 0.8]\n"
        'log_level = "debug"\n',
        encoding="utf-8",
    )
    monkeypatch.setenv("FADECANDY_REQUEST_TIMEOUT", "3.5")
    monkeypatch.setenv("FADECANDY_VERBOSE", "no")

    config = Config.from_sources(path, {"server_url": "ws://10.0.0.9:7890"})

    assert config.server_url == "ws://10.0.0.9:7890"
    assert config.request_timeout == 3.5
    assert config.gamma == 2.2
    assert config.whitepoint == (0.9, 1.0, 0.8)
    assert config.verbose is False
    assert config.log_level == "DEBUG"


def test_env_whitepoint_accepts_comma_list(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("FADECANDY_CONFIG", raising=False)
    monkeypatch.setenv("FADECANDY_WHITEPOINT", "1, 0.5, 0.25")
    assert Config.from_sources().whitepoint == (1.0, 0.5, 0.25)


def test_unknown_file_keys_rejected(tmp_path: Path) -> None:
    path = tmp_path / "fadecandy.toml"
    path.write_text("colour = 1\n", encoding="utf-8")
    with pytest.raises(ValueError, match="Unknown configuration key"):
        Config.from_sources(path)


def test_missing_config_file_rejected(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        Config.from_sources(tmp_path / "absent.toml")


def test_logging_dict_is_serialisable() -> None:
    logged = Config(whitepoint=(1.0, 0.9, 0.8)).logging_dict()
    assert logged["whitepoint"] == [1.0, 0.9, 0.8]
    assert logged["listen"] == ["127.0.0.1", 7890]
