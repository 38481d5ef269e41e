"""Integer arithmetic utilities for cents-based escrow accounting.

All amounts, fees and balances use int (cents). No float, no Decimal.
Rates are basis points: 500 bps == 5%.
"""

BPS_DENOMINATOR = 10_000


def cents_to_display(cents: int, currency: str = "USD") -> str:
    """Convert cents to display string: 650000 -> '6,500.00 USD', -1200 -> '-12.00 USD'."""
    sign = "-" if cents < 0 else ""
    abs_cents = abs(cents)
    return f"{sign}{abs_cents // 100:,}.{abs_cents % 100:02d} {currency}"


def apply_bps_half_up(amount: int, bps: int) -> int:
    """Return amount * bps / 10000 rounded half-up (non-negative inputs only).

    Using integer half-up: (a * b + d // 2) // d
    """
    if amount < 0 or bps < 0:
        raise ValueError(f"amount and bps must be non-negative, got {amount}, {bps}")
    if amount == 0 or bps == 0:
        return 0
    return (amount * bps + BPS_DENOMINATOR // 2) // BPS_DENOMINATOR


def split_fee(amount: int, fee_bps: int) -> tuple[int, int]:
    """Split a payment into (platform_fee, worker_receives).

    The fee is rounded half-up, so any residual cent lands on the platform side
    and platform_fee + worker_receives == amount always holds.
    """
    platform_fee = apply_bps_half_up(amount, fee_bps)
    return platform_fee, amount - platform_fee


def percent_of(total: int, percentage: float) -> int:
    """Percentage (0-100, may be fractional) of a cents total, rounded half-up."""
    if not (0 <= percentage <= 100):
        raise ValueError(f"Percentage must be between 0 and 100, got {percentage}")
    bps = round(percentage * 100)
    return apply_bps_half_up(total, bps)


def allocate_by_percentages(total: int, percentages: list[float]) -> list[int]:
    """Allocate total across slots; the last slot absorbs the rounding residual.

    [0, 70, 30] of 1000 -> [0, 700, 300]
    [33.34, 33.33, 33.33] of 1000 -> [333, 333, 334]
    """
    if not percentages:
        return []
    parts = [percent_of(total, p) for p in percentages[:-1]]
    parts.append(total - sum(parts))
    return parts


def split_evenly(total: int, slots: int) -> list[int]:
    """Even split; the last slot absorbs the remainder: 1000 / 3 -> [333, 333, 334]."""
    if slots <= 0:
        return []
    base = total // slots
    return [base] * (slots - 1) + [total - base * (slots - 1)]


def scale_half_up(value: int, numerator: int, denominator: int) -> int:
    """value * numerator / denominator, rounded half-up."""
    if denominator <= 0:
        raise ValueError(f"denominator must be positive, got {denominator}")
    return (value * numerator * 2 + denominator) // (denominator * 2)
