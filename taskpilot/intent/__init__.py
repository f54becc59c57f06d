"""Intent recognition exports."""

from .recognizer import IntentRecognizer, IntentRule, default_rules, parse_form_fields
from .tables import CHAIN_IDS, MAX_UINT256, NATIVE_TOKEN_ADDRESS, PROTOCOLS, TOKEN_ADDRESSES

__all__ = [
    "IntentRecognizer",
    "IntentRule",
    "default_rules",
    "parse_form_fields",
    "CHAIN_IDS",
    "MAX_UINT256",
    "NATIVE_TOKEN_ADDRESS",
    "PROTOCOLS",
    "TOKEN_ADDRESSES",
]
