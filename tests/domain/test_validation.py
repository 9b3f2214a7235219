"""Tests for input validation: names, commands, domains and environments."""

from __future__ import annotations

import pytest

from twoine.domain.errors import ValidationError
from twoine.domain.validation import (
    find_forbidden_pattern,
    has_allowed_prefix,
    normalize_domain,
    validate_custom_command,
    validate_custom_command_name,
    validate_database_name,
    validate_environment,
    validate_service_name,
    validate_site_name,
    validate_start_command,
    validate_timeout,
    validate_unit_name,
)


class TestSiteName:
    @pytest.mark.parametrize("name", ["demo1", "abc", "my-shop", "shop_2", "a" * 30])
    def test_valid(self, name: str) -> None:
        assert validate_site_name(name) == name

    @pytest.mark.parametrize(
        "name", ["ab", "1site", "Demo", "my.site", "a" * 31, "-site", "", "site name"]
    )
    def test_invalid(self, name: str) -> None:
        with pytest.raises(ValidationError) as exc_info:
            validate_site_name(name)
        assert exc_info.value.code == "VALIDATION_ERROR"


class TestServiceName:
    def test_two_characters_is_enough(self) -> None:
        assert validate_service_name("ui") == "ui"

    def test_single_character_rejected(self) -> None:
        with pytest.raises(ValidationError):
            validate_service_name("a")


class TestDatabaseName:
    def test_valid(self) -> None:
        assert validate_database_name("shop_main") == "shop_main"

    @pytest.mark.parametrize("name", ["ab", "shop-main", "Shop", "9shop"])
    def test_invalid(self, name: str) -> None:
        with pytest.raises(ValidationError):
            validate_database_name(name)


class TestUnitName:
    def test_valid(self) -> None:
        assert validate_unit_name("twoine-demo1-api") == "twoine-demo1-api"

    @pytest.mark.parametrize(
        "name", ["twoine-demo1", "twoine demo1 api", "twoine-demo1-api;reboot", "x" * 101]
    )
    def test_invalid(self, name: str) -> None:
        with pytest.raises(ValidationError):
            validate_unit_name(name)


class TestCustomCommandName:
    @pytest.mark.parametrize("name", ["start", "stop", "restart", "install", "build", "logs"])
    def test_reserved_names_rejected(self, name: str) -> None:
        with pytest.raises(ValidationError, match="reserved"):
            validate_custom_command_name(name)

    def test_valid(self) -> None:
        assert validate_custom_command_name("migrate") == "migrate"


class TestStartCommand:
    @pytest.mark.parametrize(
        "command",
        ["npm start", "node server.js", "python3 app.py", "./start --port 3000", "go run main.go"],
    )
    def test_allowed(self, command: str) -> None:
        assert validate_start_command(command) == command

    def test_local_script_needs_exact_allowed_name(self) -> None:
        with pytest.raises(ValidationError, match="must begin with"):
            validate_start_command("./start.sh")

    @pytest.mark.parametrize(
        "command", ["npm start\nUser=root", "npm start\rUser=root", "node app.js\x00", "npm\tstart"]
    )
    def test_control_characters_rejected(self, command: str) -> None:
        with pytest.raises(ValidationError, match="forbidden"):
            validate_start_command(command)

    @pytest.mark.parametrize(
        "command",
        [
            "npm start; rm -rf /",
            "node app.js | tee out",
            "node $(whoami)",
            "cat /etc/passwd",
            "node ../../app.js",
            "sudo node app.js",
        ],
    )
    def test_forbidden_pattern_rejected(self, command: str) -> None:
        with pytest.raises(ValidationError, match="forbidden"):
            validate_start_command(command)

    def test_unknown_program_rejected(self) -> None:
        with pytest.raises(ValidationError, match="must begin with"):
            validate_start_command("bash server.sh")

    def test_empty_rejected(self) -> None:
        with pytest.raises(ValidationError):
            validate_start_command("   ")

    def test_prefix_needs_word_boundary(self) -> None:
        assert has_allowed_prefix("npm run serve")
        assert not has_allowed_prefix("npmx start")


class TestCustomCommand:
    def test_any_program_allowed(self) -> None:
        assert validate_custom_command("make migrate") == "make migrate"

    @pytest.mark.parametrize("command", ["mkfs.ext4 /dev/sda", "dd if=/dev/zero", "reboot"])
    def test_host_damaging_commands_rejected(self, command: str) -> None:
        with pytest.raises(ValidationError):
            validate_custom_command(command)

    @pytest.mark.parametrize("command", ["npm run migrate\nid", "make build\r\nreboot"])
    def test_line_breaks_rejected(self, command: str) -> None:
        with pytest.raises(ValidationError, match="forbidden"):
            validate_custom_command(command)

    def test_reports_first_matching_pattern(self) -> None:
        assert find_forbidden_pattern("echo hi && ls") is not None
        assert find_forbidden_pattern("npm run build") is None


class TestTimeout:
    @pytest.mark.parametrize("timeout", [10, 300, 3600])
    def test_bounds_inclusive(self, timeout: int) -> None:
        assert validate_timeout(timeout) == timeout

    @pytest.mark.parametrize("timeout", [9, 3601])
    def test_out_of_bounds(self, timeout: int) -> None:
        with pytest.raises(ValidationError):
            validate_timeout(timeout)


class TestNormalizeDomain:
    def test_lowercases(self) -> None:
        assert normalize_domain("Shop.Example.COM") == "shop.example.com"

    @pytest.mark.parametrize(
        ("raw", "fragment"),
        [
            ("bad..example.com", "double dots"),
            ("a;b.example.com", "semicolons"),
            ("a|b.example.com", "pipes"),
            ("a b.example.com", "spaces"),
        ],
    )
    def test_message_names_offending_input(self, raw: str, fragment: str) -> None:
        with pytest.raises(ValidationError, match=fragment):
            normalize_domain(raw)

    @pytest.mark.parametrize("raw", ["localhost", "-bad.example.com", "example.c", ""])
    def test_invalid_format(self, raw: str) -> None:
        with pytest.raises(ValidationError):
            normalize_domain(raw)


class TestEnvironment:
    def test_values_stringified(self) -> None:
        assert validate_environment({"PORT": 3000, "DEBUG": None}) == {
            "PORT": "3000",
            "DEBUG": "",
        }

    @pytest.mark.parametrize("key", ["lower", "1ABC", "WITH-DASH", ""])
    def test_bad_keys(self, key: str) -> None:
        with pytest.raises(ValidationError):
            validate_environment({key: "x"})

    def test_line_breaks_rejected(self) -> None:
        with pytest.raises(ValidationError, match="line breaks"):
            validate_environment({"KEY": "a\nb"})
