"""Tests for the command-line interface."""

import tomli_w
from typer.testing import CliRunner

from gyazobridge.cli.main import app

runner = CliRunner()


def _write_config(tmp_path):
    path = tmp_path / "config.toml"
    data_dir = tmp_path / "data"
    with open(path, "wb") as f:
        tomli_w.dump(
            {
                "general": {"data_dir": str(data_dir)},
                "gyazo": {"vault_path": str(tmp_path / "vault")},
            },
            f,
        )
    return path, data_dir


def test_force_sync_without_token_leaves_no_state(tmp_path, restore_root_logger, monkeypatch):
    monkeypatch.delenv("GYAZOBRIDGE_GYAZO__ACCESS_TOKEN", raising=False)
    config_path, data_dir = _write_config(tmp_path)

    result = runner.invoke(app, ["--config", str(config_path), "sync", "--force"], input="y\n")

    assert result.exit_code == 1
    assert "access token is not configured" in result.output
    assert not (data_dir / "gyazo.db").exists()
