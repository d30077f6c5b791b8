"""
Redaction tests - nothing identifying may reach a teaser.
"""
import re

from leadgate.services.redaction import (
    EMAIL_TOKEN,
    NAME_TOKEN,
    PHONE_TOKEN,
    SNIPPET_MAX_LENGTH,
    mask_literals,
    redact,
)


def _has_phone_digits(text: str) -> bool:
    return re.search(r"\d{3}[\s.-]?\d{4}", text) is not None


class TestRedactPhones:
    def test_dashed_us_number(self):
        assert redact("Call 512-555-9876 tonight") == f"Call {PHONE_TOKEN} tonight"

    def test_parenthesized_area_code(self):
        assert redact("reach me at (512) 555-9876") == f"reach me at {PHONE_TOKEN}"

    def test_e164_number_is_one_token(self):
        assert redact("text +15125559876 please") == f"text {PHONE_TOKEN} please"

    def test_country_code_with_spaces(self):
        result = redact("call +1 512 555 9876")
        assert result == f"call {PHONE_TOKEN}"

    def test_bare_ten_digits(self):
        assert redact("5125559876") == PHONE_TOKEN

    def test_seven_digit_local(self):
        assert redact("my cell 555-9876") == f"my cell {PHONE_TOKEN}"

    def test_dotted_number(self):
        assert not _has_phone_digits(redact("512.555.9876"))


class TestRedactEmail:
    def test_email_replaced(self):
        assert redact("email jane.doe+spa@example.co.uk ok") == f"email {EMAIL_TOKEN} ok"

    def test_email_before_phone(self):
        result = redact("jane@example.com or 512-555-9876")
        assert result == f"{EMAIL_TOKEN} or {PHONE_TOKEN}"


class TestRedactNames:
    def test_my_name_is(self):
        assert redact("Hello, my name is Jane Doe and I need a massage") == (
            f"Hello, my name is {NAME_TOKEN} and I need a massage"
        )

    def test_my_name_is_keeps_original_casing(self):
        assert redact("MY NAME IS jane") == f"MY NAME IS {NAME_TOKEN}"
        assert redact("My name is Jane.") == f"My name is {NAME_TOKEN}."

    def test_i_am_capitalized(self):
        assert redact("Hi, I'm Jane. Sore shoulders.") == f"Hi, I'm {NAME_TOKEN}. Sore shoulders."

    def test_i_am_spelled_out(self):
        assert redact("I am Maria Lopez") == f"I am {NAME_TOKEN}"

    def test_i_am_lowercase_word_is_not_a_name(self):
        assert redact("I am looking for a 60 minute session") == "I am looking for a 60 minute session"


class TestRedactAddress:
    def test_street_address(self):
        result = redact("Come to 123 Main Street after 5")
        assert "123 Main" not in result
        assert "[ADDRESS]" in result

    def test_abbreviated_suffix(self):
        assert "[ADDRESS]" in redact("at 4500 W Oak Ave.")


class TestRedactShape:
    def test_empty_and_none(self):
        assert redact("") == ""
        assert redact(None) == ""

    def test_truncated_to_160(self):
        result = redact("relaxing " * 40)
        assert len(result) <= SNIPPET_MAX_LENGTH

    def test_deterministic(self):
        text = "I'm Jane, call 512-555-9876 or jane@example.com"
        assert redact(text) == redact(text)

    def test_plain_text_unchanged(self):
        assert redact("Lower back tension, prefers firm pressure") == (
            "Lower back tension, prefers firm pressure"
        )


class TestMaskLiterals:
    def test_masks_name_parts(self):
        result = mask_literals("Jane says Doe family is coming", name="Jane Doe")
        assert "Jane" not in result
        assert "Doe" not in result

    def test_masks_phone_with_odd_separators(self):
        result = mask_literals("digits 512 555 98 76", phone="+15125559876")
        assert PHONE_TOKEN in result
        assert "98 76" not in result

    def test_masks_email_case_insensitively(self):
        assert mask_literals("JANE@EXAMPLE.COM", email="jane@example.com") == EMAIL_TOKEN

    def test_single_letter_name_parts_ignored(self):
        assert mask_literals("a b c", name="J") == "a b c"

    def test_empty_text(self):
        assert mask_literals("", name="Jane") == ""
