"""Tests for Rich Console factory and theme."""

from io import StringIO

from twoine.output.console import TWOINE_THEME, create_console, get_output, style_for_status


class TestCreateConsole:
    def test_returns_console_with_stringio(self) -> None:
        console = create_console()
        assert isinstance(console.file, StringIO)

    def test_no_color_disables_ansi(self) -> None:
        console = create_console(no_color=True)
        console.print("[tw.error]down[/tw.error]")
        output = get_output(console)
        assert "\x1b" not in output
        assert "down" in output

    def test_default_width(self) -> None:
        assert create_console().width == 120


class TestStyleForStatus:
    def test_known_status(self) -> None:
        assert style_for_status("running") == "tw.status.running"
        assert "tw.status.failed" in TWOINE_THEME.styles

    def test_unknown_status_is_unstyled(self) -> None:
        assert style_for_status("deleted") == ""
