import pytest

from royale_bot import MissingSeeds
from royale_bot.models import RoleEntries
from royale_bot.validation import (
    InvalidValueError,
    build_setup,
    normalize_client_seeds,
    parse_role_entries,
    validate_collect_duration,
    validate_entry_count,
    validate_setup_name,
)


def test_validate_setup_name():
    assert validate_setup_name("  weekly ") == "weekly"
    with pytest.raises(InvalidValueError):
        validate_setup_name("   ")
    with pytest.raises(InvalidValueError):
        validate_setup_name("two words")
    with pytest.raises(InvalidValueError):
        validate_setup_name("x" * 101)


@pytest.mark.parametrize("seconds", [0, -5, 8 * 24 * 60 * 60])
def test_validate_collect_duration_bounds(seconds):
    with pytest.raises(InvalidValueError):
        validate_collect_duration(seconds)


def test_validate_entry_count_label():
    with pytest.raises(InvalidValueError, match="Entries for role vip"):
        validate_entry_count(0, label="Entries for role vip")
    assert validate_entry_count(1000) == 1000


def test_parse_role_entries():
    assert parse_role_entries("123:5, 456:2") == [
        RoleEntries(role_id="123", entries=5),
        RoleEntries(role_id="456", entries=2),
    ]
    assert parse_role_entries("") == []


@pytest.mark.parametrize("raw", ["123", "123:x", "123:5 123:2", "bad!:3", "1:0"])
def test_parse_role_entries_rejects(raw):
    with pytest.raises(InvalidValueError):
        parse_role_entries(raw)


def test_invalid_value_error_is_value_error():
    assert issubclass(InvalidValueError, ValueError)


def test_normalize_client_seeds():
    assert normalize_client_seeds(" a ", "b\n") == ("a", "b")
    with pytest.raises(MissingSeeds, match="clientSeed1, clientSeed2"):
        normalize_client_seeds(None, "")
    with pytest.raises(MissingSeeds, match="clientSeed1"):
        normalize_client_seeds("", "b")


def test_build_setup():
    setup = build_setup(
        setup_id="setup-x",
        name="weekly",
        description="  Weekly draw  ",
        collect_duration_seconds=60,
        base_entries=2,
        role_entries=[RoleEntries("vip", 5)],
        updated_by=7,
    )

    assert setup.description == "Weekly draw"
    assert setup.role_entries == (RoleEntries("vip", 5),)
    assert setup.updated_at.endswith("Z")
