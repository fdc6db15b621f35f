"""Billing money helpers - tax, totals, invoice numbers and plan prices

All amounts are integer minor currency units (centavos).
"""

import random
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, List, Optional, Tuple

TAX_RATE = Decimal("0.16")  # IVA
MAX_AMOUNT = 999_999_999
SUPPORTED_CURRENCIES = ("MXN", "USD", "EUR")
DEFAULT_CURRENCY = "MXN"
INVOICE_DUE_DAYS = 30

PAYMENT_METHODS = ("card", "bank_transfer", "oxxo", "spei")
PAYMENT_TYPES = ("consultation", "subscription", "one_time")
SUBSCRIPTION_INTERVALS = ("monthly", "quarterly", "yearly")

# Monthly price per plan in MXN centavos
PLAN_MONTHLY_PRICES = {
    "basic": 29900,
    "premium": 59900,
    "professional": 99900,
}

INTERVAL_MONTHS = {
    "monthly": 1,
    "quarterly": 3,
    "yearly": 12,
}

CURRENCY_SYMBOLS = {
    "MXN": "$",
    "USD": "$",
    "EUR": "€",
}


def calculate_tax(subtotal: int, rate: Decimal = TAX_RATE) -> int:
    """Tax rounded half-up to whole minor units"""
    return int((Decimal(subtotal) * rate).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def calculate_invoice_totals(items: Iterable) -> Tuple[int, int, int, List[int]]:
    """
    Compute (subtotal, tax, total, item_amounts) for invoice items.

    Items may be dicts or objects exposing quantity and unit_price.
    """
    item_amounts = []
    for item in items:
        if isinstance(item, dict):
            quantity, unit_price = item["quantity"], item["unit_price"]
        else:
            quantity, unit_price = item.quantity, item.unit_price
        item_amounts.append(int(quantity) * int(unit_price))

    subtotal = sum(item_amounts)
    tax = calculate_tax(subtotal)
    return subtotal, tax, subtotal + tax, item_amounts


def generate_invoice_number(today: Optional[date] = None) -> str:
    """INV-YYYYMMDD-NNN with a random three digit suffix"""
    today = today or date.today()
    return f"INV-{today.strftime('%Y%m%d')}-{random.randint(0, 999):03d}"


def format_currency(amount: Optional[int], currency: str = DEFAULT_CURRENCY) -> str:
    """Format minor units as major units, e.g. 123456 MXN -> $1,234.56 MXN"""
    major = Decimal(amount or 0) / Decimal(100)
    symbol = CURRENCY_SYMBOLS.get(currency, "")
    return f"{symbol}{major:,.2f} {currency}"


def validate_amount(amount) -> bool:
    return isinstance(amount, int) and not isinstance(amount, bool) and 0 < amount <= MAX_AMOUNT


def validate_currency(currency: Optional[str]) -> bool:
    return currency in SUPPORTED_CURRENCIES


def plan_amount(plan: str, interval: str) -> int:
    """Price for a plan billed every interval; raises KeyError for unknown values"""
    return PLAN_MONTHLY_PRICES[plan] * INTERVAL_MONTHS[interval]
