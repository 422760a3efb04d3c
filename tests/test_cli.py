# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""Tests for the cortex-memory command line."""

import json

import pytest
import yaml

from cortex_memory import __version__
from cortex_memory.cli import build_parser, main


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "cortex.yaml"
    path.write_text(
        yaml.safe_dump(
            {
                "storage": {"base_path": str(tmp_path / "memory")},
                "search": {"embedding_dim": 8},
            }
        )
    )
    return path


class TestParser:
    def test_search_defaults(self) -> None:
        args = build_parser().parse_args(["search", "sqlite wal"])

        assert args.command == "search"
        assert args.query == "sqlite wal"
        assert args.mode == "hybrid"
        assert args.embeddings is False

    def test_invalid_mode_rejected(self) -> None:
        with pytest.raises(SystemExit):
            build_parser().parse_args(["search", "x", "--mode", "fuzzy"])

    def test_version(self, capsys) -> None:
        with pytest.raises(SystemExit) as exc_info:
            main(["--version"])

        assert exc_info.value.code == 0
        assert __version__ in capsys.readouterr().out


class TestCommands:
    def test_no_command_prints_help(self, capsys) -> None:
        assert main([]) == 0
        assert "usage: cortex-memory" in capsys.readouterr().out

    def test_status(self, config_file, tmp_path, capsys) -> None:
        assert main(["--config", str(config_file), "status"]) == 0

        status = json.loads(capsys.readouterr().out)
        assert status["store"]["records"] == 0
        assert status["lifecycle"]["counts"] == {"working": 0, "short_term": 0, "long_term": 0}
        assert str(tmp_path / "memory") in status["store"]["path"]

    def test_promote_defaults_to_dry_run(self, config_file, capsys) -> None:
        assert main(["--config", str(config_file), "promote"]) == 0

        report = json.loads(capsys.readouterr().out)
        assert report["dry_run"] is True
        assert report["analysis"]["total_actions"] == 0

    def test_promote_apply(self, config_file, capsys) -> None:
        assert main(["--config", str(config_file), "promote", "--apply"]) == 0
        assert json.loads(capsys.readouterr().out)["dry_run"] is False

    def test_decay(self, config_file, capsys) -> None:
        assert main(["--config", str(config_file), "decay"]) == 0
        assert json.loads(capsys.readouterr().out)["scanned"] == 0

    def test_search_empty_store(self, config_file, capsys) -> None:
        assert main(["--config", str(config_file), "search", "sqlite"]) == 0
        assert json.loads(capsys.readouterr().out) == []

    def test_invalid_options_reported(self, config_file, capsys) -> None:
        code = main(["--config", str(config_file), "search", "sqlite", "--limit", "-5"])

        assert code == 1
        assert "Error [INVALID_SEARCH_OPTIONS]" in capsys.readouterr().err
