"""Tests for template value formatters.

Numeric and date formatters must return unparseable input unchanged.
"""

from datetime import date, datetime

import pytest
from hypothesis import given, settings, strategies as st

from notifyhub.modules.template import render
from notifyhub.modules.template.formatters import apply_formatter, apply_formatters


class TestTextFormatters:
    """Tests for upper, lower, title, truncate and default."""

    def test_case_formatters(self):
        assert apply_formatter("Hello World", "upper") == "HELLO WORLD"
        assert apply_formatter("Hello World", "lower") == "hello world"
        assert apply_formatter("hello wORLD", "title") == "Hello World"

    def test_truncate_default_length(self):
        value = "x" * 60
        assert apply_formatter(value, "truncate") == "x" * 50 + "..."

    def test_truncate_short_value_unchanged(self):
        assert apply_formatter("short", "truncate:10") == "short"

    def test_truncate_with_bad_length_returns_value(self):
        assert apply_formatter("abcdef", "truncate:many") == "abcdef"

    def test_default_applies_only_to_empty_values(self):
        assert apply_formatter("", "default:Friend") == "Friend"
        assert apply_formatter(None, "default:Friend") == "Friend"
        assert apply_formatter("Asha", "default:Friend") == "Asha"

    def test_default_keeps_separators_in_fallback(self):
        assert apply_formatter(None, "default:a,b:c") == "a,b:c"

    def test_unknown_formatter_is_ignored(self):
        assert apply_formatter("value", "sparkle:3") == "value"

    def test_chain(self):
        assert apply_formatters(None, ["default:guest user", "title"]) == "Guest User"


class TestCurrencyFormatter:
    """Tests for currency formatting."""

    def test_inr_in_indian_locale(self):
        assert render("{{amount|currency:INR:en-IN}}", {"amount": 1234567}) == "₹12,34,567.00"

    def test_numeric_string(self):
        assert apply_formatter("99.5", "currency:USD:en-US") == "$99.50"

    def test_defaults_to_inr(self):
        assert apply_formatter(10, "currency") == "₹10.00"

    def test_non_numeric_amount_rendered_unchanged(self):
        assert render("{{amount|currency:INR:en-IN}}", {"amount": "abc"}) == "abc"

    def test_unknown_currency_or_locale_returns_value(self):
        assert apply_formatter(5, "currency:INR:zz-ZZ") == 5
        assert apply_formatter(True, "currency:INR") is True

    @given(value=st.one_of(st.text(max_size=15), st.none(), st.booleans(), st.lists(st.integers(), max_size=3)))
    @settings(max_examples=100)
    def test_currency_never_raises(self, value):
        apply_formatter(value, "currency:INR:en-IN")


class TestDateFormatter:
    """Tests for date formatting."""

    def test_iso_string(self):
        assert apply_formatter("2024-01-15", "date:en-US") == "1/15/2024"

    def test_datetime_and_date_objects(self):
        assert apply_formatter(datetime(2024, 1, 15, 9, 0), "date:en-US") == "1/15/2024"
        assert apply_formatter(date(2024, 1, 15), "date:en-US") == "1/15/2024"

    def test_epoch_milliseconds(self):
        assert apply_formatter(1705276800000, "date:en-US") == "1/15/2024"

    def test_locale_orders_numeric_parts(self):
        assert apply_formatter("2026-10-17", "date:en-IN") == "17/10/2026"
        assert apply_formatter("2026-10-17", "date:en-US") == "10/17/2026"

    def test_unparseable_date_unchanged(self):
        assert apply_formatter("next tuesday", "date:en-IN") == "next tuesday"
        assert render("{{when|date:en-IN}}", {"when": "soon"}) == "soon"

    @given(value=st.one_of(st.text(max_size=25), st.integers(), st.floats(allow_nan=True), st.none()))
    @settings(max_examples=100)
    def test_date_never_raises(self, value):
        apply_formatter(value, "date:en-IN")

    @pytest.mark.parametrize("spec", ["date:", "date:xx", "date:en-IN,extra"])
    def test_odd_arguments_do_not_raise(self, spec):
        apply_formatter("2024-01-15", spec)
