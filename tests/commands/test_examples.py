"""Tests for --examples flag on CLI commands."""

from __future__ import annotations

import pytest
from click.testing import CliRunner

from twoine.cli import cli

# (CLI args, expected keywords in output)
EXAMPLES_COMMANDS: list[tuple[list[str], list[str]]] = [
    (["site", "--examples"], ["twoine site create demo1", "--databases delete"]),
    (["site", "create", "--examples"], ["--env NODE_ENV=production"]),
    (["site", "env", "--examples"], ["--unset LOG_LEVEL"]),
    (["site", "sftp", "--examples"], ["reset-password demo1"]),
    (["service", "--examples"], ["twoine service create demo1 api"]),
    (["service", "create", "--examples"], ["--depends-on api"]),
    (["service", "command", "--examples"], ["--requires-stop"]),
    (["domain", "--examples"], ["twoine domain dns"]),
    (["domain", "add", "--examples"], ["--no-ssl"]),
    (["domain", "platform", "--examples"], ["platform setup panel.example.com"]),
    (["database", "--examples"], ["twoine database create demo1 shop mysql"]),
    (["database", "link", "--examples"], ["TWOINE_LINK_PASSWORD"]),
    (["init", "--examples"], ["twoine init"]),
    (["upgrade", "--examples"], ["twoine upgrade --check"]),
]


def _examples_id(item: tuple[list[str], list[str]]) -> str:
    """Generate a readable test ID from args."""
    args, _ = item
    return "_".join(a for a in args if a != "--examples")


@pytest.mark.parametrize(
    "args,expected_keywords",
    EXAMPLES_COMMANDS,
    ids=[_examples_id(item) for item in EXAMPLES_COMMANDS],
)
def test_examples_flag(
    cli_runner: CliRunner, args: list[str], expected_keywords: list[str]
) -> None:
    result = cli_runner.invoke(cli, args)
    assert result.exit_code == 0
    for kw in expected_keywords:
        assert kw in result.output, f"Expected '{kw}' in examples output for {args}"


class TestExamplesInHelp:
    """--examples is listed in the help of commands that define it."""

    @pytest.mark.parametrize(
        "args",
        [
            ["site", "--help"],
            ["site", "delete", "--help"],
            ["service", "update", "--help"],
            ["service", "command", "run", "--help"],
            ["domain", "platform", "update", "--help"],
            ["database", "stats", "--help"],
        ],
    )
    def test_examples_in_help(self, cli_runner: CliRunner, args: list[str]) -> None:
        result = cli_runner.invoke(cli, args)
        assert result.exit_code == 0
        assert "--examples" in result.output


class TestExamplesEagerExit:
    """--examples exits before argument validation."""

    def test_skips_required_args(self, cli_runner: CliRunner) -> None:
        result = cli_runner.invoke(cli, ["service", "create", "--examples"])
        assert result.exit_code == 0
        assert "Examples for" in result.output

    def test_skips_password_prompt(self, cli_runner: CliRunner) -> None:
        result = cli_runner.invoke(cli, ["database", "link", "--examples"])
        assert result.exit_code == 0
        assert "Password" not in result.output
