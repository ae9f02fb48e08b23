from pathlib import Path

import pytest

from evtc.config import ClientConfig, ConfigurationError, load_client_config


def test_load_client_config_prefers_environment_over_yaml(tmp_path: Path) -> None:
    config_path = tmp_path / "config.yaml"
    config_path.write_text(
        """
        chain:
          url: http://filehost:8888
        wallet:
          url: http://filehost:9999
        rpc:
          timeout: 10
          read_retries: 5
        """
    )

    env_map = {"EVTC_URL": "https://envhost:443/", "EVTC_TIMEOUT": "3.5"}

    config = load_client_config(config_path=config_path, env=env_map)

    assert isinstance(config, ClientConfig)
    assert config.chain_url == "https://envhost:443"
    assert config.wallet_url == "http://filehost:9999"
    assert config.timeout == 3.5
    assert config.read_retries == 5


def test_overrides_beat_environment(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr("evtc.config.DEFAULT_CONFIG_PATH", tmp_path / "missing.yaml")

    config = load_client_config(
        config_path=None,
        env={"EVTC_WALLET_URL": "http://envwallet:9999"},
        overrides={"wallet_url": "http://flagwallet:7777", "chain_url": None},
    )

    assert config.wallet_url == "http://flagwallet:7777"


def test_defaults_when_nothing_is_configured(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr("evtc.config.DEFAULT_CONFIG_PATH", tmp_path / "missing.yaml")

    config = load_client_config(env={})

    assert config == ClientConfig()
    assert config.chain_url == "http://127.0.0.1:8888"
    assert config.wallet_url == "http://127.0.0.1:9999"


def test_explicit_missing_config_file_is_an_error(tmp_path: Path) -> None:
    with pytest.raises(ConfigurationError):
        load_client_config(config_path=tmp_path / "nope.yaml", env={})


@pytest.mark.parametrize(
    "env_map",
    [
        {"EVTC_URL": "localhost:8888"},
        {"EVTC_TIMEOUT": "soon"},
        {"EVTC_TIMEOUT": "0"},
        {"EVTC_READ_RETRIES": "-1"},
    ],
)
def test_invalid_values_raise_configuration_error(tmp_path: Path, monkeypatch: pytest.MonkeyPatch, env_map) -> None:
    monkeypatch.setattr("evtc.config.DEFAULT_CONFIG_PATH", tmp_path / "missing.yaml")

    with pytest.raises(ConfigurationError):
        load_client_config(env=env_map)


def test_non_mapping_section_is_rejected(tmp_path: Path) -> None:
    config_path = tmp_path / "config.yaml"
    config_path.write_text("chain: http://not-a-mapping\n")

    with pytest.raises(ConfigurationError):
        load_client_config(config_path=config_path, env={})
