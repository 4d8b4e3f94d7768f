"""
shared/utils/money.py
Display helpers for integer minor-unit amounts.
"""

from decimal import Decimal


def format_minor_units(amount: int, exponent: int = 2) -> str:
    """12345 -> '123.45'"""
    return f"{(Decimal(amount) / (Decimal(10) ** exponent)):.{exponent}f}"
