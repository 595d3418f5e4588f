"""Tests for configuration validation and the CLI wiring."""

import pytest
from click.testing import CliRunner

from mergemock.cli import cli
from mergemock.config import ConsensusBehavior, ConsensusConfig, RelayConfig
from mergemock.exceptions import FatalSetupError

from conftest import JWT_SECRET


def test_consensus_defaults():
    config = ConsensusConfig()
    config.validate()
    assert config.engine_addr == "http://127.0.0.1:8551"
    assert config.slot_time == 12.0
    assert config.slots_per_epoch == 32
    assert config.genesis_validators_root_bytes == b"\x00" * 32
    assert config.bellatrix_fork_version_bytes == b"\x02\x00\x00\x00"
    assert not config.signing_domains
    assert not RelayConfig().signing_domains


@pytest.mark.parametrize(
    "kwargs",
    [
        {"slot_time": 0.01},
        {"slots_per_epoch": 0},
        {"slot_bound": -1},
        {"genesis_validators_root": "0x1234"},
        {"bellatrix_fork_version": "0xzz"},
        {"behavior": ConsensusBehavior(gap_freq=1.5)},
        {"behavior": ConsensusBehavior(reorg_max_depth=-1)},
    ],
)
def test_consensus_validation(kwargs):
    with pytest.raises(FatalSetupError):
        ConsensusConfig(**kwargs).validate()


def test_jwt_secret(tmp_path, jwt_secret_path):
    assert ConsensusConfig(jwt_secret_path=str(jwt_secret_path)).jwt_secret == JWT_SECRET

    bad = tmp_path / "bad.hex"
    bad.write_text("not hex")
    with pytest.raises(FatalSetupError):
        ConsensusConfig(jwt_secret_path=str(bad)).jwt_secret
    with pytest.raises(FatalSetupError):
        ConsensusConfig(jwt_secret_path=str(tmp_path / "missing.hex")).jwt_secret


def test_relay_validation():
    RelayConfig().validate()
    with pytest.raises(FatalSetupError):
        RelayConfig(proposal_tracking="sometimes").validate()
    with pytest.raises(FatalSetupError):
        RelayConfig(cache_capacity=0).validate()
    with pytest.raises(FatalSetupError):
        RelayConfig(genesis_fork_version="0x00").validate()


def test_cli_rejects_short_slot_time(genesis_path, jwt_secret_path):
    result = CliRunner().invoke(cli, [
        "consensus",
        "--genesis", str(genesis_path),
        "--jwt-secret", str(jwt_secret_path),
        "--slot-time", "0.01",
    ])
    assert result.exit_code == 1


def test_cli_missing_genesis(tmp_path, jwt_secret_path):
    result = CliRunner().invoke(cli, [
        "consensus",
        "--genesis", str(tmp_path / "missing.json"),
        "--jwt-secret", str(jwt_secret_path),
    ])
    assert result.exit_code == 1


def test_cli_lists_commands():
    result = CliRunner().invoke(cli, ["--help"])
    assert result.exit_code == 0
    assert "consensus" in result.output
    assert "relay" in result.output


def test_cli_relay_signing_domains(monkeypatch):
    seen = []

    async def fake_run_relay(config):
        seen.append(config)

    monkeypatch.setattr("mergemock.cli.run_relay", fake_run_relay)
    assert CliRunner().invoke(cli, ["relay"]).exit_code == 0
    assert CliRunner().invoke(cli, ["relay", "--signing-domains"]).exit_code == 0
    assert [config.signing_domains for config in seen] == [False, True]
