"""Unit tests for purchase amount parsing."""
import pytest

from services.youtube.chat.currency import CurrencyParser, parse_amount


@pytest.fixture
def parser():
    return CurrencyParser()


@pytest.mark.unit
class TestCurrencyParser:
    """CurrencyParser.parse over the supported display formats."""

    @pytest.mark.parametrize(
        "display, amount, currency",
        [
            ("$5.00", 5.0, "USD"),
            ("USD 5.00", 5.0, "USD"),
            ("TRY 219,99", 219.99, "TRY"),
            ("CA$10.00", 10.0, "CAD"),
            ("A$5", 5.0, "AUD"),
            ("€1.234,56", 1234.56, "EUR"),
            ("£2.50", 2.5, "GBP"),
            ("¥500", 500.0, "JPY"),
            ("₹1,000.00", 1000.0, "INR"),
            ("R$25,00", 25.0, "BRL"),
        ],
    )
    def test_supported_formats(self, parser, display, amount, currency):
        result = parser.parse(display)

        assert result.success is True
        assert result.amount == pytest.approx(amount)
        assert result.currency == currency

    @pytest.mark.parametrize(
        "display, reason",
        [
            ("-$5.00", "Negative amount not allowed"),
            ("$0.00", "Amount must be positive"),
            ("five dollars", "Unknown currency format"),
            ("", "Empty input"),
            (None, "Invalid input"),
        ],
    )
    def test_rejections(self, parser, display, reason):
        result = parser.parse(display)

        assert result.success is False
        assert result.reason == reason


@pytest.mark.unit
class TestParseAmount:
    """Separator handling."""

    @pytest.mark.parametrize(
        "text, expected",
        [
            ("1,000.50", 1000.5),
            ("1.000,50", 1000.5),
            ("219,99", 219.99),
            ("5,999", 5999.0),
            ("", 0.0),
            ("abc", 0.0),
        ],
    )
    def test_separators(self, text, expected):
        assert parse_amount(text) == pytest.approx(expected)
