# safemeals/parsers/price_parser.py
"""
Price Parser: Korean menu price notation.
Rewrites price expressions into plain digits so "10,000원", "10k" and "1만원"
all read as the same amount.
"""

import re
from decimal import Decimal

THOUSANDS_SEP_RE = re.compile(r"(?<=\d),(?=\d)")
K_SUFFIX_RE = re.compile(r"(\d+(?:\.\d+)?)[kK](?![A-Za-z])")
MAN_WON_RE = re.compile(r"(\d+(?:\.\d+)?)만원")
WON_AMOUNT_RE = re.compile(r"(\d+)\s*원")
PRICE_LABEL_RE = re.compile(r"가격|price", re.I)


def _scaled(amount, multiplier):
    # whole won only
    return str(int(Decimal(amount) * multiplier))


def strip_thousands_separators(text):
    """'10,000원' -> '10000원'"""
    return THOUSANDS_SEP_RE.sub("", text)


def expand_k_suffix(text):
    """'10k' -> '10000', '1.5k' -> '1500'"""
    return K_SUFFIX_RE.sub(lambda m: _scaled(m.group(1), 1000), text)


def expand_man_won(text):
    """'1만원' -> '10000원', '1.5만원' -> '15000원'"""
    return MAN_WON_RE.sub(lambda m: f"{_scaled(m.group(1), 10000)}원", text)


def collapse_price_description(text):
    """'가격: 5000원' -> '5000원'; text without a price label is returned as is."""
    if not PRICE_LABEL_RE.search(text):
        return text
    m = WON_AMOUNT_RE.search(text)
    if not m:
        return text
    return f"{m.group(1)}원"


def normalize_price(text):
    text = strip_thousands_separators(text)
    text = expand_k_suffix(text)
    text = expand_man_won(text)
    return collapse_price_description(text)
