def format_units(value: int, decimals: int = 18) -> str:
    """
    Format an integer token amount in whole units.

    Always keeps at least one fractional digit:
    10500000000000000000 -> "10.5", 0 -> "0.0".
    """
    sign = "-" if value < 0 else ""
    whole, fraction = divmod(abs(value), 10**decimals)
    fraction_str = str(fraction).rjust(decimals, "0").rstrip("0") or "0"
    return f"{sign}{whole}.{fraction_str}"


def format_ether(value: int) -> str:
    return format_units(value, 18)


def units_to_float(value: int, decimals: int = 18) -> float:
    return float(format_units(value, decimals))
