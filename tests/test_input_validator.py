import pytest

from awardvote.errors import InvalidInput
from awardvote.security.input_validator import InputValidator, normalize_email


@pytest.fixture
def validator():
    return InputValidator(max_ballot_entries=3)


def test_normalize_email():
    assert normalize_email("  A@X.Com ") == "a@x.com"
    with pytest.raises(InvalidInput):
        normalize_email(None)
    with pytest.raises(InvalidInput):
        normalize_email(123)


def test_sanitize_string_basic(validator):
    assert validator.sanitize_string("Hello World") == "Hello World"
    assert validator.sanitize_string(" extra spaces  ") == "extra spaces"

    # all tags are stripped
    assert validator.sanitize_string("<p>text</p>") == "text"
    assert validator.sanitize_string('<b>bold</b>') == "bold"

    long_string = "a" * 300
    assert len(validator.sanitize_string(long_string)) == 255

    assert validator.sanitize_string('<script>alert("xss")</script>') == ""
    assert "onclick" not in validator.sanitize_string('onclick=alert(1)')


def test_sanitize_string_invalid_input(validator):
    with pytest.raises(ValueError, match="Input must be a string"):
        validator.sanitize_string(123)
    with pytest.raises(ValueError, match="Input must be a string"):
        validator.sanitize_string(None)


def test_validate_email(validator):
    assert validator.validate_email("user@example.com")
    assert validator.validate_email("user.name+tag@example.co.uk")
    assert validator.validate_email("  Padded@Example.com ")

    assert not validator.validate_email("not-an-email")
    assert not validator.validate_email("@example.com")
    assert not validator.validate_email("user@")
    assert not validator.validate_email("user @example.com")
    assert not validator.validate_email("")
    assert not validator.validate_email(None)
    assert not validator.validate_email(123)
    assert not validator.validate_email("a" * 250 + "@x.com")


def test_require_email(validator):
    assert validator.require_email(" A@X.com") == "a@x.com"
    with pytest.raises(InvalidInput, match="Invalid email address"):
        validator.require_email("nope")


def test_validate_otp_and_token(validator):
    assert validator.validate_otp("123456")
    assert not validator.validate_otp("12ab56")
    assert not validator.validate_otp("123")
    assert not validator.validate_otp(123456)

    assert validator.validate_token("A" * 43)
    assert validator.validate_token("abc-DEF_123" * 4)
    assert not validator.validate_token("short")
    assert not validator.validate_token("A" * 42 + "!")
    assert not validator.validate_token(None)


def test_validate_ballot_valid(validator):
    ballot = validator.validate_ballot([
        {"category_id": "c1", "nominee_id": "n1"},
        {"categoryId": "c2", "nomineeId": "n5"},
    ])
    assert ballot == [("c1", "n1"), ("c2", "n5")]


@pytest.mark.parametrize("entries,message", [
    (None, "No votes provided"),
    ([], "No votes provided"),
    ("c1", "No votes provided"),
    ([{"category_id": f"c{i}", "nominee_id": "n1"} for i in range(4)], "Too many votes"),
    (["c1"], "Each vote must be an object"),
    ([{"category_id": "c1"}], "valid category_id and nominee_id"),
    ([{"category_id": "c1; DROP", "nominee_id": "n1"}], "valid category_id and nominee_id"),
    ([{"category_id": 1, "nominee_id": "n1"}], "valid category_id and nominee_id"),
    ([{"category_id": "c1", "nominee_id": "n1"},
      {"category_id": "c1", "nominee_id": "n2"}], "same category"),
])
def test_validate_ballot_invalid(validator, entries, message):
    with pytest.raises(InvalidInput, match=message):
        validator.validate_ballot(entries)


def test_client_signature(validator):
    assert validator.client_signature(None) == "unknown"
    assert validator.client_signature("") == "unknown"
    assert validator.client_signature("Mozilla/5.0 <b>x</b>") == "Mozilla/5.0 x"
