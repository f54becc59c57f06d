"""Builtin tool sets."""

from .page import build_page_tools
from .utility import UTILITY_TOOLS, calculate_gas_estimate, format_number, get_current_time
from .web3 import build_web3_tools

__all__ = [
    "build_page_tools",
    "build_web3_tools",
    "UTILITY_TOOLS",
    "calculate_gas_estimate",
    "format_number",
    "get_current_time",
]
