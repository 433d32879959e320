from __future__ import annotations

import main


def test_bare_invocation_runs_with_its_flags() -> None:
    args = main.parse_args(["--roi", "0,0,400,200", "--headless", "--log-level", "DEBUG"])

    assert args.command == "run"
    assert args.handler is main.run_guardian
    assert args.roi == "0,0,400,200"
    assert args.headless
    assert args.log_level == "DEBUG"


def test_empty_command_line_means_run() -> None:
    args = main.parse_args([])
    assert args.command == "run"
    assert args.roi is None


def test_explicit_subcommand_is_kept() -> None:
    args = main.parse_args(["serve", "--port", "4000", "-c", "custom.yaml"])

    assert args.command == "serve"
    assert args.handler is main.run_server
    assert args.port == 4000
    assert args.config == "custom.yaml"
