import pytest

from supportflow.contacts.addresses import normalize_address, validate_address, validate_addresses


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("(11) 98765-4321", "5511987654321"),
        ("+55 11 98765-4321", "5511987654321"),
        ("011 98765 4321", "5511987654321"),
        ("11 8765-4321", "5511987654321"),
        ("5511987654321", "5511987654321"),
        ("", ""),
    ],
)
def test_normalize_address(raw, expected):
    assert normalize_address(raw) == expected


def test_normalize_keeps_foreign_international_numbers():
    assert normalize_address("+1 415 555 2671 99") == "141555526719"


def test_normalize_landline_keeps_eight_digits():
    # Local part starting with 3 is a landline: no ninth digit.
    assert normalize_address("11 3333-4444") == "551133334444"


def test_validate_address_errors():
    assert validate_address("12345").error == "number too short"
    assert validate_address("1" * 16).error == "number too long"
    assert validate_address("55 05 98765 4321").error == "invalid area code"
    result = validate_address("+55 11 98765-4321")
    assert result.valid
    assert result.normalized == "5511987654321"


def test_validate_addresses_summary():
    looked_up = []

    def check_exists(address):
        looked_up.append(address)
        return {"5511987654321": True, "5521912345678": False}.get(address)

    batch = validate_addresses(
        ["(11) 98765-4321", "21 91234-5678", "11 3333-4444", "123"], check_exists=check_exists
    )

    assert [r.exists for r in batch.results] == [True, False, None, None]
    assert batch.results[3].error == "number too short"
    assert looked_up == ["5511987654321", "5521912345678", "551133334444"]
    summary = batch.summary
    assert (summary.total, summary.valid, summary.invalid) == (4, 3, 1)
    assert (summary.verified, summary.not_on_channel, summary.unverified) == (1, 1, 2)


def test_validate_addresses_without_checker_leaves_existence_unknown():
    batch = validate_addresses(["11987654321"])
    assert batch.results[0].valid is True
    assert batch.results[0].exists is None
    assert batch.summary.unverified == 1
