"""Tests for the command line interface."""

import argparse
import json

import pytest

from netscout import cli
from netscout.config.config_manager import ConfigManager
from netscout.core.listing import ListingPort


def test_validators():
    assert cli.validate_port_spec("22,80-81") == "22,80-81"
    assert cli.validate_timeout_value("2.5") == 2.5
    assert cli.validate_positive_int("8", "Count") == 8
    with pytest.raises(argparse.ArgumentTypeError):
        cli.validate_port_spec("0-5")
    with pytest.raises(argparse.ArgumentTypeError):
        cli.validate_timeout_value("0")
    with pytest.raises(argparse.ArgumentTypeError):
        cli.validate_positive_int("1001", "Concurrency", 1000)


def test_no_command_prints_help(capsys):
    assert cli.main([]) == 1
    assert "usage" in capsys.readouterr().out.lower()


def test_config_init_and_validate(tmp_path, capsys):
    path = str(tmp_path / "netscout_config.json")
    assert cli.main(["-c", path, "config", "init"]) == 0
    assert cli.main(["-c", path, "--no-color", "config", "validate"]) == 0
    assert "is valid" in capsys.readouterr().out


def test_strict_config_error_exit_code(tmp_path):
    path = tmp_path / "bad.json"
    path.write_text(json.dumps({"api": {"port": 0}}), encoding="utf-8")
    assert cli.main(["-c", str(path), "config", "show"]) == 2


def test_scanner_from_args_applies_flags():
    args = cli.create_parser().parse_args(["ports", "-p", "22,80", "-sV", "--timeout", "1.5", "-T", "10"])
    scanner = cli.scanner_from_args(args, ConfigManager())

    assert scanner.connect_scan is True
    assert scanner.candidate_ports == [22, 80]
    assert scanner.detect_versions is True
    assert scanner.connect_timeout == 1.5
    assert scanner.concurrency == 10


def test_ports_json_output(monkeypatch, tmp_path, capsys):
    monkeypatch.setattr(cli, "scanner_from_args", lambda args, config: cli.PortScanner(
        listing_source=lambda: [ListingPort(22, None)], process_resolver=lambda pid: ""
    ))
    out_file = tmp_path / "ports.json"

    monkeypatch.chdir(tmp_path)
    code = cli.main(["-of", "json", "-o", str(out_file), "-s", "ports"])

    assert code == 0
    printed = json.loads(capsys.readouterr().out)
    assert printed["tableData"][0]["service"] == "SSH"
    assert json.loads(out_file.read_text(encoding="utf-8")) == printed
