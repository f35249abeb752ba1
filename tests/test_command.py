"""Tests for command library."""

import pytest

from syncloop.command import Command, run
from syncloop.exceptions import CommandException


class CustomException(CommandException):
    """Raised by a failing test command."""


async def test_command() -> None:
    """Test stdout parsing of a command."""
    result = await run(Command(["echo", "Hello"]))
    assert result == "Hello\n"


async def test_command_stdin() -> None:
    """Test passing input to a command."""
    result = await run(Command(["cat"]), stdin=b"kind: ConfigMap\n")
    assert result == "kind: ConfigMap\n"


async def test_command_env() -> None:
    """Test passing environment variables to a command."""
    result = await run(Command(["sh", "-c", "echo $GREETING"], env={"GREETING": "hi"}))
    assert result == "hi\n"


async def test_failed_command() -> None:
    """Test a failing command."""
    with pytest.raises(CommandException, match="return code 1"):
        await run(Command(["/bin/false"]))


async def test_failed_command_custom_exception() -> None:
    """Test a failing command raising a custom exception."""
    with pytest.raises(CustomException, match="oops"):
        await run(Command(["sh", "-c", "echo oops >&2; exit 3"], exc=CustomException))


async def test_allowed_retcode() -> None:
    """Test a non-zero return code that indicates success."""
    result = await run(Command(["sh", "-c", "echo ok; exit 2"], retcodes=[2]))
    assert result == "ok\n"


async def test_command_timeout() -> None:
    """Test a command that runs too long."""
    with pytest.raises(CommandException, match="timed out"):
        await run(Command(["sleep", "5"], timeout=0.1))


def test_command_string() -> None:
    """Test rendering a command for logging."""
    assert str(Command(["kubectl", "get", "pods", "-l", "a=b c"])) == (
        "kubectl get pods -l 'a=b c'"
    )
