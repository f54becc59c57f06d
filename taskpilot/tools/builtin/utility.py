"""Globally available, read-only utility tools."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from langchain_core.tools import tool


@tool
def get_current_time() -> dict:
    """Get the current timestamp and date information."""

    now = datetime.now(timezone.utc).astimezone()
    return {
        "timestamp": int(now.timestamp() * 1000),
        "iso": now.isoformat(),
        "date": now.date().isoformat(),
        "time": now.time().replace(microsecond=0).isoformat(),
        "timezone": now.tzname(),
    }


@tool
def format_number(number: str, decimals: int, unit: Optional[str] = None) -> dict:
    """Format a number with a fixed number of decimal places and an optional unit symbol."""

    if not 0 <= decimals <= 18:
        raise ValueError("decimals must be between 0 and 18")
    try:
        value = float(number)
    except (TypeError, ValueError) as e:
        raise ValueError("Invalid number format") from e

    formatted = f"{value:.{decimals}f}"
    return {
        "original": number,
        "formatted": f"{formatted} {unit}" if unit else formatted,
        "decimals": decimals,
        "unit": unit,
    }


@tool
def calculate_gas_estimate(gas_units: int, gas_price_gwei: str) -> dict:
    """Calculate the estimated gas cost in ETH for a transaction."""

    if gas_units < 21000:
        raise ValueError("gas_units must be at least 21000")
    try:
        price_gwei = float(gas_price_gwei)
    except (TypeError, ValueError) as e:
        raise ValueError("Invalid gas price format") from e

    price_wei = price_gwei * 1e9
    total_wei = gas_units * price_wei
    return {
        "gas_units": gas_units,
        "gas_price_gwei": price_gwei,
        "gas_price_wei": price_wei,
        "total_cost_wei": total_wei,
        "total_cost_eth": total_wei / 1e18,
    }


UTILITY_TOOLS = [get_current_time, format_number, calculate_gas_estimate]
