from decimal import ROUND_HALF_UP, Decimal

MAX_AMOUNT_DIGITS = 8


def digits_to_cents(text: str, previous: int) -> int:
    """Read keyboard input as a count of cents.

    Everything but digits is dropped, so "12.34", "€12,34" and "1234" all mean
    1234 cents. Empty input is zero; input longer than ``MAX_AMOUNT_DIGITS``
    digits is rejected and ``previous`` is kept.
    """
    digits = "".join(ch for ch in text if ch.isdigit())
    if not digits:
        return 0
    if len(digits) > MAX_AMOUNT_DIGITS:
        return previous
    return int(digits)


def format_cents(cents: int) -> str:
    return f"{cents // 100}.{cents % 100:02d}"


def cents_to_amount(cents: int) -> float:
    return cents / 100


def amount_to_cents(amount: float) -> int:
    # via str() so 0.29 becomes 29 rather than 28.999...
    return int((Decimal(str(amount)) * 100).quantize(Decimal("1"), ROUND_HALF_UP))


def format_currency(amount: float, symbol: str = "€", include_cents: bool = True) -> str:
    if include_cents:
        body = f"{amount:,.2f}".replace(",", " ").replace(".", ",")
    else:
        body = f"{amount:,.0f}".replace(",", " ")
    return f"{symbol}{body}"
