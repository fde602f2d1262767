from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from shared.logging.logger import get_logger

log = get_logger("youtube.currency")


@dataclass
class CurrencyParseResult:
    success: bool
    amount: float = 0.0
    currency: str = ""
    symbol: str = ""
    original_string: str = ""
    reason: Optional[str] = None


CURRENCY_SYMBOLS: Dict[str, str] = {
    "TRY": "₺",
    "EUR": "€",
    "GBP": "£",
    "JPY": "¥",
    "KRW": "₩",
    "BRL": "R$",
    "RUB": "₽",
    "PLN": "zł",
    "THB": "฿",
    "PHP": "₱",
    "MYR": "RM",
    "ZAR": "R",
    "NGN": "₦",
    "INR": "₹",
    "USD": "$",
    "CAD": "$",
    "AUD": "$",
    "NZD": "$",
    "SGD": "$",
    "HKD": "$",
    "TWD": "NT$",
    "CHF": "Fr",
    "SEK": "kr",
    "NOK": "kr",
    "DKK": "kr",
    "CZK": "Kč",
    "HUF": "Ft",
    "UAH": "₴",
    "ILS": "₪",
    "VND": "₫",
    "IDR": "Rp",
    "PKR": "₨",
    "BDT": "৳",
}

_AMOUNT = r"([0-9,]+(?:\.[0-9]{1,2})?)"
_WHOLE = r"([0-9,]+)"

# Order matters: "$" is the most common symbol and is checked last
_SYMBOL_PATTERNS: List[Tuple[re.Pattern, str, str]] = [
    (re.compile("₺" + _AMOUNT), "TRY", "₺"),
    (re.compile("₹" + _AMOUNT), "INR", "₹"),
    (re.compile(r"€([0-9,.]+)"), "EUR", "€"),
    (re.compile("£" + _AMOUNT), "GBP", "£"),
    (re.compile("¥" + _WHOLE), "JPY", "¥"),
    (re.compile("₩" + _WHOLE), "KRW", "₩"),
    (re.compile("₽" + _AMOUNT), "RUB", "₽"),
    (re.compile("฿" + _AMOUNT), "THB", "฿"),
    (re.compile("₱" + _AMOUNT), "PHP", "₱"),
    (re.compile("₦" + _AMOUNT), "NGN", "₦"),
    (re.compile("₴" + _AMOUNT), "UAH", "₴"),
    (re.compile("₪" + _AMOUNT), "ILS", "₪"),
    (re.compile("₫" + _WHOLE), "VND", "₫"),
    (re.compile("৳" + _AMOUNT), "BDT", "৳"),
    (re.compile("₨" + _AMOUNT), "PKR", "₨"),
    (re.compile(r"\$" + _AMOUNT), "USD", "$"),
]

_CODE_SPACE = re.compile(r"^([A-Za-z]{3})\s+([0-9,]+(?:[.,][0-9]{1,2})?)$")
_CODE_SYMBOL = re.compile(r"^([A-Za-z]{3})\$([0-9,]+(?:\.[0-9]{1,2})?)$")

_PREFIXED_DOLLARS = (
    ("CA$", "CAD"),
    ("A$", "AUD"),
    ("NZ$", "NZD"),
    ("HK$", "HKD"),
    ("NT$", "TWD"),
    ("R$", "BRL"),
)


def parse_amount(amount_str: str) -> float:
    """
    Parse a display amount honoring US and European separators.

    "1,000.50" and "1.000,50" both parse to 1000.5; a lone comma followed by
    one or two digits is a decimal separator ("219,99"), otherwise a
    thousands separator ("5,999").
    """
    if not amount_str:
        return 0.0

    has_comma = "," in amount_str
    has_period = "." in amount_str

    if has_comma and has_period:
        if amount_str.rfind(",") > amount_str.rfind("."):
            cleaned = amount_str.replace(".", "").replace(",", ".", 1)
        else:
            cleaned = amount_str.replace(",", "")
    elif has_comma:
        after = amount_str[amount_str.rfind(",") + 1:]
        if 0 < len(after) <= 2:
            cleaned = amount_str.replace(",", ".")
        else:
            cleaned = amount_str.replace(",", "")
    else:
        cleaned = amount_str

    try:
        return float(cleaned)
    except ValueError:
        return 0.0


class CurrencyParser:
    """
    Parses YouTube purchase amount display strings ("$5.00", "TRY 219,99",
    "CA$10.00", "€1.234,56") into an amount and ISO currency code.
    """

    def parse(self, display: Optional[str]) -> CurrencyParseResult:
        if not isinstance(display, str):
            return self._failure(display, "Invalid input")

        text = display.strip()
        if not text:
            return self._failure(display, "Empty input")

        if text.startswith("-"):
            log.warning(f"[YouTube] Negative purchase amount rejected: {display!r}")
            return self._failure(display, "Negative amount not allowed")

        result = (
            self._parse_code_space(text)
            or self._parse_code_symbol(text)
            or self._parse_symbol(text)
        )
        if result is None:
            log.warning(f"[YouTube] Unknown currency format detected: {display!r}")
            return self._failure(display, "Unknown currency format")

        if result.amount <= 0:
            return self._failure(display, "Amount must be positive")

        return result

    # ------------------------------------------------------------------ #

    def _parse_code_space(self, text: str) -> Optional[CurrencyParseResult]:
        match = _CODE_SPACE.match(text)
        if not match:
            return None
        currency = match.group(1).upper()
        return CurrencyParseResult(
            success=True,
            amount=parse_amount(match.group(2)),
            currency=currency,
            symbol=CURRENCY_SYMBOLS.get(currency, currency),
            original_string=text,
        )

    def _parse_code_symbol(self, text: str) -> Optional[CurrencyParseResult]:
        for prefix, currency in _PREFIXED_DOLLARS:
            if text.startswith(prefix):
                amount = parse_amount(text[len(prefix):].strip())
                if amount > 0:
                    return CurrencyParseResult(
                        success=True,
                        amount=amount,
                        currency=currency,
                        symbol=prefix,
                        original_string=text,
                    )

        match = _CODE_SYMBOL.match(text)
        if not match:
            return None
        return CurrencyParseResult(
            success=True,
            amount=parse_amount(match.group(2)),
            currency=match.group(1).upper(),
            symbol="$",
            original_string=text,
        )

    def _parse_symbol(self, text: str) -> Optional[CurrencyParseResult]:
        for pattern, currency, symbol in _SYMBOL_PATTERNS:
            match = pattern.search(text)
            if match:
                return CurrencyParseResult(
                    success=True,
                    amount=parse_amount(match.group(1)),
                    currency=currency,
                    symbol=symbol,
                    original_string=text,
                )
        return None

    @staticmethod
    def _failure(original, reason: str) -> CurrencyParseResult:
        return CurrencyParseResult(
            success=False,
            original_string=original if isinstance(original, str) else "",
            reason=reason,
        )


__all__ = ["CURRENCY_SYMBOLS", "CurrencyParseResult", "CurrencyParser", "parse_amount"]
