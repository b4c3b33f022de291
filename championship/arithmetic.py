"""Overflow-checked unsigned 64-bit arithmetic."""

from championship.errors import ArithmeticOverflowError

MAX_AMOUNT = 2**64 - 1


def checked_add(*values: int) -> int:
    """Sum values, raising if the result leaves the u64 range."""
    total = 0
    for value in values:
        if value < 0:
            raise ArithmeticOverflowError(f"negative operand: {value}")
        total += value
        if total > MAX_AMOUNT:
            raise ArithmeticOverflowError("addition overflow")
    return total


def checked_sub(a: int, b: int) -> int:
    if b > a:
        raise ArithmeticOverflowError(f"subtraction underflow: {a} - {b}")
    return a - b


def checked_mul(a: int, b: int) -> int:
    result = a * b
    if result > MAX_AMOUNT or result < 0:
        raise ArithmeticOverflowError("multiplication overflow")
    return result


def percent_of(amount: int, pct: int) -> int:
    """floor(amount * pct / 100) with the product held to u64."""
    return checked_mul(amount, pct) // 100


def pro_rata(pool: int, share: int, total: int) -> int:
    """floor(pool * share / total).

    The product is a double-width (u128) intermediate; only the quotient must
    fit back into u64.
    """
    if total <= 0:
        return 0
    if pool > MAX_AMOUNT or share > MAX_AMOUNT:
        raise ArithmeticOverflowError("pro-rata operand out of range")
    result = (pool * share) // total
    if result > MAX_AMOUNT:
        raise ArithmeticOverflowError("pro-rata result overflow")
    return result
