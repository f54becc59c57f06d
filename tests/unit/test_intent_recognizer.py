"""Tests for rule-based intent recognition."""

import pytest

from taskpilot.intent import NATIVE_TOKEN_ADDRESS, TOKEN_ADDRESSES, IntentRecognizer, parse_form_fields
from taskpilot.models import ActionType


@pytest.fixture
def recognizer():
    return IntentRecognizer()


class TestExtractIntent:
    def test_swap_instruction(self, recognizer):
        intent = recognizer.extract_intent("swap 10 USDC to ETH")

        assert intent.action == ActionType.SWAP
        assert intent.entities["amount"] == "10"
        assert intent.entities["from_token"] == "USDC"
        assert intent.entities["to_token"] == "ETH"
        assert intent.confidence >= 0.9
        assert intent.raw_instruction == "swap 10 USDC to ETH"

    def test_token_addresses_are_resolved(self, recognizer):
        intent = recognizer.extract_intent("swap 10 usdc to eth")

        assert intent.entities["from_token"] == "USDC"
        assert intent.entities["from_token_address"] == TOKEN_ADDRESSES["usdc"]
        assert intent.entities["to_token_address"] == NATIVE_TOKEN_ADDRESS

    def test_token_symbol_is_not_read_as_chain(self, recognizer):
        intent = recognizer.extract_intent("swap 10 USDC to ETH")
        assert intent.chains == []

    def test_bridge_resolves_chains(self, recognizer):
        intent = recognizer.extract_intent("bridge 100 USDC from ethereum to polygon")

        assert intent.action == ActionType.BRIDGE
        assert intent.entities["chain_id"] == 1
        assert intent.entities["to_chain_id"] == 137
        assert intent.chains == [1, 137]
        assert intent.confidence == pytest.approx(1.0)

    def test_send_requires_address(self, recognizer):
        recipient = "0x" + "ab" * 20
        intent = recognizer.extract_intent(f"send 0.5 ETH to {recipient}")

        assert intent.action == ActionType.SEND
        assert intent.entities["recipient"] == recipient
        assert intent.entities["amount"] == "0.5"

    def test_chinese_swap(self, recognizer):
        intent = recognizer.extract_intent("将 100 USDT 兑换为 DAI")

        assert intent.action == ActionType.SWAP
        assert intent.entities["from_token"] == "USDT"
        assert intent.entities["to_token"] == "DAI"

    def test_navigate(self, recognizer):
        intent = recognizer.extract_intent("go to https://app.uniswap.org")

        assert intent.action == ActionType.NAVIGATE
        assert intent.entities["url"] == "https://app.uniswap.org"
        assert intent.protocols == ["uniswap"]

    def test_switch_network(self, recognizer):
        intent = recognizer.extract_intent("switch to polygon")

        assert intent.action == ActionType.SWITCH_NETWORK
        assert intent.entities["chain_id"] == 137
        assert intent.entities["network"] == "polygon"
        assert intent.confidence == pytest.approx(0.9)

    def test_fill_form_parses_fields(self, recognizer):
        intent = recognizer.extract_intent("fill the form with name: Alice, email=alice@example.com")

        assert intent.action == ActionType.FILL_FORM
        assert intent.entities["fields"] == [
            {"name": "name", "value": "Alice", "type": "text"},
            {"name": "email", "value": "alice@example.com", "type": "email"},
        ]

    def test_query_balance(self, recognizer):
        intent = recognizer.extract_intent("check my ETH balance")

        assert intent.action == ActionType.QUERY
        assert intent.entities["token"] == "ETH"
        assert intent.confidence == pytest.approx(0.7)

    def test_unrecognised_falls_back_to_query(self, recognizer):
        intent = recognizer.extract_intent("hello there")

        assert intent.action == ActionType.QUERY
        assert intent.entities == {}
        assert intent.confidence == pytest.approx(0.3)

    def test_empty_instruction_does_not_raise(self, recognizer):
        intent = recognizer.extract_intent("")
        assert intent.action == ActionType.QUERY

    def test_context_chain_seeds_chains(self, recognizer):
        intent = recognizer.extract_intent("swap 10 USDC to DAI", {"chain_id": 137})
        assert intent.chains == [137]

    def test_constraints_and_protocols(self, recognizer):
        intent = recognizer.extract_intent(
            "swap 10 USDC to ETH with 0.5% slippage using the cheapest route on uniswap, gas limit 300000"
        )

        assert intent.constraints["slippage"] == pytest.approx(0.5)
        assert intent.constraints["preference"] == "CHEAPEST"
        assert intent.constraints["gas_limit"] == 300000
        assert intent.protocols == ["uniswap"]


class TestHelpers:
    def test_confidence_halved_when_required_missing(self, recognizer):
        rule = next(r for r in recognizer.rules if r.action == ActionType.SWAP)
        assert recognizer.calculate_confidence(rule, {"amount": "1", "from_token": "A"}) == pytest.approx(0.5)

    def test_optional_entities_raise_confidence_up_to_one(self, recognizer):
        rule = next(r for r in recognizer.rules if r.action == ActionType.STAKE)
        entities = {"amount": "1", "token": "ETH", "staking_contract": "0x1", "chain_id": 1}
        assert recognizer.calculate_confidence(rule, entities) == pytest.approx(1.0)

    def test_extract_chains_keeps_first_mention_order(self):
        assert IntentRecognizer.extract_chains("from arbitrum to base via arb") == [42161, 8453]

    def test_suggest_missing_entities(self, recognizer):
        intent = recognizer.extract_intent("swap 10 USDC to ETH")
        assert recognizer.suggest_missing_entities(intent) == []
        assert recognizer.validate_intent(intent) is True

        fallback = recognizer.extract_intent("hello there")
        assert recognizer.suggest_missing_entities(fallback) == ["token"]
        assert recognizer.validate_intent(fallback) is False

    def test_parse_form_fields_unstructured(self):
        assert parse_form_fields("just some text") == [{"value": "just some text", "type": "text"}]
