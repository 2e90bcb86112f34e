"""Tests for phone number validation and standardization."""

import pytest

from openphone_sync.utils.phone import (
    digits_only,
    is_placeholder,
    is_valid_phone_number,
    normalize_phone_for_comparison,
    partial_phone_key,
    standardize_phone_number,
)


class TestIsPlaceholder:
    """Test placeholder detection."""

    @pytest.mark.parametrize("value", ["N/A", "n/a", "TBD", "x", "", "  ", "None"])
    def test_placeholders(self, value):
        """Known placeholders are recognized regardless of case."""
        assert is_placeholder(value)

    def test_none_is_placeholder(self):
        """A missing value counts as a placeholder."""
        assert is_placeholder(None)

    def test_real_number_is_not_placeholder(self):
        """A real number is not a placeholder."""
        assert not is_placeholder("706-877-4587")


class TestIsValidPhoneNumber:
    """Test phone validation."""

    @pytest.mark.parametrize("value", ["N/A", "TBD", "", "x", None])
    def test_placeholders_are_invalid(self, value):
        """Placeholders never validate."""
        assert is_valid_phone_number(value) is False

    @pytest.mark.parametrize(
        "value", ["706-877-4587", "(706) 877-4587", "706.877.4587", "+1 706 877 4587"]
    )
    def test_formatted_numbers_are_valid(self, value):
        """Common US formats validate."""
        assert is_valid_phone_number(value) is True

    def test_too_few_digits(self):
        """Seven digit local numbers are not callable."""
        assert is_valid_phone_number("877-4587") is False

    def test_too_many_digits(self):
        """More than fifteen digits is rejected."""
        assert is_valid_phone_number("1234567890123456") is False

    def test_letters_rejected(self):
        """Extensions written with letters are rejected."""
        assert is_valid_phone_number("706-877-4587 ext 12") is False

    def test_non_string_rejected(self):
        """Non-string values are rejected."""
        assert is_valid_phone_number(7068774587) is False


class TestStandardizePhoneNumber:
    """Test conversion to the format sent to OpenPhone."""

    @pytest.mark.parametrize(
        "value", ["706-877-4587", "7064037343", "+17068774587", "1-706-877-4587"]
    )
    def test_us_numbers_get_country_code(self, value):
        """US numbers are converted to E.164."""
        result = standardize_phone_number(value)
        assert result.startswith("+1")
        assert len(result) == 12

    def test_dashed_number(self):
        """The dashed form is standardized exactly."""
        assert standardize_phone_number("706-877-4587") == "+17068774587"

    def test_plus_prefix_kept(self):
        """A leading '+' is kept and formatting removed."""
        assert standardize_phone_number("+44 20 7123 4567") == "+442071234567"

    def test_double_zero_prefix(self):
        """A leading '00' becomes '+'."""
        assert standardize_phone_number("0044 20 7123 4567") == "+442071234567"

    def test_ten_digits_starting_with_one_returned_bare(self):
        """A ten digit number with an invalid area code is not prefixed."""
        assert standardize_phone_number("1234567890") == "1234567890"

    def test_long_international_returned_bare(self):
        """Twelve digits without a prefix are returned as digits."""
        assert standardize_phone_number("442071234567") == "442071234567"

    def test_seven_digits_kept(self):
        """Seven digit local numbers are kept as digits."""
        assert standardize_phone_number("877-4587") == "8774587"

    def test_short_fragment_returns_empty(self):
        """Fewer than seven digits cannot be standardized."""
        assert standardize_phone_number("12345") == ""

    @pytest.mark.parametrize("value", ["N/A", "TBD", "", None])
    def test_placeholders_return_empty(self, value):
        """Placeholders standardize to an empty string."""
        assert standardize_phone_number(value) == ""


class TestNormalizePhoneForComparison:
    """Test the comparison key."""

    @pytest.mark.parametrize(
        "value", ["+17068774587", "1 (706) 877-4587", "706.877.4587", "7068774587"]
    )
    def test_us_variants_compare_equal(self, value):
        """Every US variant reduces to the ten digit number."""
        assert normalize_phone_for_comparison(value) == "7068774587"

    def test_international_kept(self):
        """Non-US numbers keep their prefix."""
        assert normalize_phone_for_comparison("+44 20 7123 4567") == "+442071234567"

    def test_empty(self):
        """Empty input gives an empty key."""
        assert normalize_phone_for_comparison("") == ""
        assert normalize_phone_for_comparison(None) == ""


class TestPartialPhoneKey:
    """Test the last-seven-digits key."""

    def test_last_seven_digits(self):
        """The key is the trailing seven digits."""
        assert partial_phone_key("+1 706-877-4587") == "8774587"

    def test_local_and_full_forms_share_key(self):
        """A local number matches its full form."""
        assert partial_phone_key("877-4587") == partial_phone_key("(706) 877-4587")

    def test_short_number_has_no_key(self):
        """Numbers shorter than seven digits produce no key."""
        assert partial_phone_key("4587") == ""


class TestDigitsOnly:
    """Test digit extraction."""

    def test_strips_formatting(self):
        """Only digits survive."""
        assert digits_only("+1 (706) 877-4587") == "17068774587"

    def test_empty(self):
        """None gives an empty string."""
        assert digits_only(None) == ""
