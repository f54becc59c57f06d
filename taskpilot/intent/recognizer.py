"""Rule-based intent recognition for wallet and page instructions."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional, Pattern, Sequence, Tuple

from taskpilot.models import ActionType, Intent

from .tables import CHAIN_IDS, PROTOCOLS, chain_id_for, token_address_for

LOGGER = logging.getLogger(__name__)

FALLBACK_CONFIDENCE = 0.3

_AMOUNT = r"(?P<amount>\d+(?:\.\d+)?)"
_ADDRESS = r"0x[a-fA-F0-9]{40}"

# Entity name -> entity holding its canonical address.
_TOKEN_FIELDS = {
    "from_token": "from_token_address",
    "to_token": "to_token_address",
    "token": "token_address",
}


@dataclass(frozen=True, slots=True)
class IntentRule:
    """One action with its patterns and entity expectations."""

    action: ActionType
    patterns: Tuple[Pattern[str], ...]
    required: Tuple[str, ...]
    optional: Tuple[str, ...]
    weight: float


def _rule(action: ActionType, patterns: Sequence[str], required: Sequence[str],
          optional: Sequence[str], weight: float) -> IntentRule:
    return IntentRule(
        action=action,
        patterns=tuple(re.compile(p, re.IGNORECASE) for p in patterns),
        required=tuple(required),
        optional=tuple(optional),
        weight=weight,
    )


def default_rules() -> List[IntentRule]:
    """Built-in rule table, in priority order for equal confidence."""

    return [
        _rule(ActionType.SWAP, [
            rf"\bswap\s+{_AMOUNT}\s+(?P<from_token>[A-Za-z0-9]+)\s+(?:to|for)\s+(?P<to_token>[A-Za-z0-9]+)",
            rf"\bexchange\s+{_AMOUNT}\s+(?P<from_token>[A-Za-z0-9]+)\s+for\s+(?P<to_token>[A-Za-z0-9]+)",
            rf"转换\s*{_AMOUNT}\s*(?P<from_token>[A-Za-z0-9]+)\s*到\s*(?P<to_token>[A-Za-z0-9]+)",
            rf"将\s*{_AMOUNT}\s*(?P<from_token>[A-Za-z0-9]+)\s*兑换为\s*(?P<to_token>[A-Za-z0-9]+)",
        ], ["from_token", "to_token", "amount"], ["chain_id"], 1.0),
        _rule(ActionType.BRIDGE, [
            rf"\bbridge\s+{_AMOUNT}\s+(?P<token>[A-Za-z0-9]+)\s+from\s+(?P<from_chain>[A-Za-z]+)\s+to\s+(?P<to_chain>[A-Za-z]+)",
            rf"跨链\s*{_AMOUNT}\s*(?P<token>[A-Za-z0-9]+)\s*从\s*(?P<from_chain>[A-Za-z]+)\s*到\s*(?P<to_chain>[A-Za-z]+)",
            rf"\btransfer\s+{_AMOUNT}\s+(?P<token>[A-Za-z0-9]+)\s+to\s+(?P<to_chain>[A-Za-z]+)\s+chain",
        ], ["amount", "token"], ["chain_id", "recipient"], 1.0),
        _rule(ActionType.STAKE, [
            rf"\bstake\s+{_AMOUNT}\s+(?P<token>[A-Za-z0-9]+)",
            rf"质押\s*{_AMOUNT}\s*(?P<token>[A-Za-z0-9]+)",
            rf"\bfarm\s+{_AMOUNT}\s+(?P<token>[A-Za-z0-9]+)",
        ], ["amount", "token"], ["staking_contract", "chain_id"], 0.9),
        _rule(ActionType.SEND, [
            rf"\bsend\s+{_AMOUNT}\s+(?P<token>[A-Za-z0-9]+)\s+to\s+(?P<recipient>{_ADDRESS})",
            rf"转账\s*{_AMOUNT}\s*(?P<token>[A-Za-z0-9]+)\s*到\s*(?P<recipient>{_ADDRESS})",
            rf"\btransfer\s+{_AMOUNT}\s+(?P<token>[A-Za-z0-9]+)\s+to\s+(?P<recipient>{_ADDRESS})",
        ], ["amount", "token", "recipient"], ["chain_id"], 1.0),
        _rule(ActionType.APPROVE, [
            rf"\bapprove\s+(?P<token>[A-Za-z0-9]+)\s+for\s+(?P<spender>{_ADDRESS})",
            rf"授权\s*(?P<token>[A-Za-z0-9]+)\s*给\s*(?P<spender>{_ADDRESS})",
            rf"\ballow\s+(?P<spender>{_ADDRESS})\s+to\s+spend\s+(?P<token>[A-Za-z0-9]+)",
        ], ["token", "spender"], ["amount", "chain_id"], 0.9),
        _rule(ActionType.ADD_LIQUIDITY, [
            r"\badd\s+liquidity\s+with\s+(?P<amount>\d+(?:\.\d+)?)\s+(?P<token>[A-Za-z0-9]+)"
            r"\s+and\s+(?P<amount_b>\d+(?:\.\d+)?)\s+(?P<token_b>[A-Za-z0-9]+)",
            r"添加\s*(?P<amount>\d+(?:\.\d+)?)\s*(?P<token>[A-Za-z0-9]+)\s*和"
            r"\s*(?P<amount_b>\d+(?:\.\d+)?)\s*(?P<token_b>[A-Za-z0-9]+)\s*流动性",
        ], ["token", "amount"], ["chain_id"], 0.8),
        _rule(ActionType.QUERY, [
            r"\bwhat\s+is\s+my\s+(?P<token>[A-Za-z0-9]+)\s+balance",
            r"\bcheck\s+(?:my\s+)?(?P<token>[A-Za-z0-9]+)\s+balance",
            r"查询\s*(?P<token>[A-Za-z0-9]+)\s*余额",
            r"我的\s*(?P<token>[A-Za-z0-9]+)\s*余额是多少",
        ], ["token"], ["address", "chain_id"], 0.7),
        _rule(ActionType.CONNECT_WALLET, [
            r"\bconnect\s+(?:my\s+)?wallet\s+to\s+(?P<dapp_name>[A-Za-z0-9]+)",
            r"连接钱包到\s*(?P<dapp_name>[A-Za-z0-9]+)",
        ], ["dapp_name"], ["dapp_url", "chain_id"], 0.8),
        _rule(ActionType.SWITCH_NETWORK, [
            r"\bswitch\s+to\s+(?P<network>[A-Za-z]+)",
            r"切换到\s*(?P<network>[A-Za-z]+)",
            r"\bchange\s+network\s+to\s+(?P<network>[A-Za-z]+)",
        ], ["chain_id"], [], 0.9),
        _rule(ActionType.NAVIGATE, [
            r"\bgo\s+to\s+(?P<url>https?://\S+)",
            r"\bnavigate\s+to\s+(?P<url>https?://\S+)",
            r"\bopen\s+(?P<url>https?://\S+)",
            r"访问\s*(?P<url>https?://\S+)",
            r"打开\s*(?P<url>https?://\S+)",
        ], ["url"], ["timeout"], 0.95),
        _rule(ActionType.CLICK, [
            r"\bclick\s+(?:on\s+)?(?:the\s+)?(?P<element>[A-Za-z0-9\s_\-]+)",
            r"点击\s*(?P<element>[A-Za-z0-9\s_\-]+)",
            r"\bpress\s+(?:the\s+)?(?P<element>[A-Za-z0-9\s_\-]+?)\s+button",
            r"按一下\s*(?P<element>[A-Za-z0-9\s_\-]+)",
        ], ["element"], ["selector", "text"], 0.9),
        _rule(ActionType.FILL_FORM, [
            r"\bfill\s+(?:out\s+)?(?:the\s+)?form\s+with\s+(?P<fields>.+)",
            r"填写\s*表单\s*(?P<fields>.+)",
            r"\benter\s+(?P<fields>.+?)\s+into\s+(?:the\s+)?form",
            r"将\s*(?P<fields>.+?)\s*输入表单",
        ], ["fields"], ["submit"], 0.85),
        _rule(ActionType.SCREENSHOT, [
            r"\btake\s+a\s+screenshot",
            r"\bscreenshot\s+(?:the\s+)?page",
            r"\bcapture\s+(?:the\s+)?screen",
            r"屏幕截图",
            r"截图",
        ], [], ["selector"], 0.95),
        _rule(ActionType.WAIT, [
            r"\bwait\s+(?:for\s+)?(?P<condition>.+)",
            r"等待\s*(?P<condition>.+)",
            r"\bpause\s+(?:for\s+)?(?P<condition>.+)",
            r"暂停\s*(?P<condition>.+)",
        ], ["condition"], ["timeout"], 0.9),
        _rule(ActionType.SCROLL, [
            r"\bscroll\s+(?P<direction>up|down|top|bottom)\b",
            r"滚动\s*(?P<direction>向上|向下|顶部|底部)",
            r"\bscroll\s+to\s+(?P<direction>.+)",
            r"滚动到\s*(?P<direction>.+)",
        ], ["direction"], ["selector"], 0.9),
        _rule(ActionType.CREATE_PLAN, [
            r"\bcreate\s+(?:an?\s+)?(?:execution\s+)?plan\s+for\s+(?P<task>.+)",
            r"\bplan\s+(?:how\s+to\s+)?(?P<task>.+)",
            r"\bcreate\s+a\s+strategy\s+for\s+(?P<task>.+)",
            r"制定\s*(?P<task>.+)",
            r"规划\s*(?P<task>.+)",
        ], ["task"], ["complexity", "strategy"], 0.85),
        _rule(ActionType.VALIDATE_TASK, [
            r"\bvalidate\s+(?:the\s+)?(?:task\s+)?completion\s+of\s+(?P<task>.+)",
            r"\bcheck\s+if\s+(?P<task>.+?)\s+(?:was\s+)?completed",
            r"\bverify\s+(?P<task>.+?)\s+result",
            r"验证\s*(?P<task>.+)",
            r"检查\s*(?P<task>.+)",
        ], ["task"], ["expected_outcome", "validation_method"], 0.8),
        _rule(ActionType.COORDINATE_AGENTS, [
            r"\bcoordinate\s+(?:the\s+)?agents\s+to\s+(?P<task>.+)",
            r"\buse\s+multi-?agent\s+coordination\s+for\s+(?P<task>.+)",
            r"\benable\s+multi-?agent\s+system",
            r"协调\s*智能体\s*(?P<task>.+)",
            r"启用\s*多智能体",
        ], ["task"], ["agents", "strategy"], 0.9),
        _rule(ActionType.ANALYZE_TASK, [
            r"\banalyze\s+how\s+to\s+(?P<task>.+)",
            r"\banalyze\s+(?:the\s+)?(?:complexity\s+of\s+)?(?P<task>.+)",
            r"\bunderstand\s+(?:the\s+)?requirements\s+for\s+(?P<task>.+)",
            r"分析\s*(?P<task>.+)",
            r"理解\s*(?P<task>.+)",
        ], ["task"], ["complexity"], 0.85),
    ]


_CONSTRAINT_PATTERNS = {
    "slippage": re.compile(r"(\d+(?:\.\d+)?)\s*%\s*slippage", re.IGNORECASE),
    "gas_limit": re.compile(r"gas\s+limit\s+(\d+)", re.IGNORECASE),
    "gas_price": re.compile(r"gas\s+price\s+(\d+(?:\.\d+)?)", re.IGNORECASE),
}

_PREFERENCES = (
    ("FASTEST", ("fastest", "最快")),
    ("CHEAPEST", ("cheapest", "最便宜")),
    ("BEST_RATE", ("best rate", "最优价格")),
)

_CHAIN_WORD_RE = re.compile(
    r"\b(" + "|".join(sorted((re.escape(name) for name in CHAIN_IDS), key=len, reverse=True)) + r")\b",
    re.IGNORECASE,
)

_FORM_FIELD_PATTERNS = (
    re.compile(r"([A-Za-z0-9\s_]+)\s*[:=]\s*([A-Za-z0-9\s_.@+\-]+)"),
    re.compile(r"enter\s+([A-Za-z0-9\s_.@+\-]+?)\s+(?:as|in|for)\s+([A-Za-z0-9\s_]+)", re.IGNORECASE),
    re.compile(r"fill\s+([A-Za-z0-9\s_]+?)\s+with\s+([A-Za-z0-9\s_.@+\-]+)", re.IGNORECASE),
)


def parse_form_fields(text: str) -> List[Dict[str, str]]:
    """Turn ``"name: Alice, email=alice@example.com"`` style text into field dicts.

    Each field is ``{"name", "value", "type"}`` where type is one of
    text/email/number/password. Unstructured text becomes a single
    nameless text field.
    """
    fields: List[Dict[str, str]] = []

    for index, pattern in enumerate(_FORM_FIELD_PATTERNS):
        for match in pattern.finditer(text):
            name, value = match.group(1).strip(), match.group(2).strip()
            if index == 1:
                # "enter <value> as <field>"
                name, value = value, name
            if name and value:
                fields.append({"name": name, "value": value, "type": _field_type(value)})

    if not fields:
        for part in re.split(r"[,，]", text):
            pieces = [p.strip() for p in re.split(r"[:=]", part)]
            if len(pieces) >= 2 and pieces[0]:
                fields.append({"name": pieces[0], "value": pieces[1], "type": "text"})

    return fields or [{"value": text.strip(), "type": "text"}]


def _field_type(value: str) -> str:
    if "@" in value:
        return "email"
    if value.isdigit():
        return "number"
    if "password" in value.lower():
        return "password"
    return "text"


class IntentRecognizer:
    """Derives a structured :class:`Intent` from free text.

    Every rule is tried; each matching rule scores
    ``weight * (0.5 if a required entity is missing else 1) + 0.1 * optional_present``
    (capped at 1.0) and the best score wins. No match yields a QUERY intent
    at confidence 0.3. Never raises on unrecognised input.
    """

    def __init__(self, rules: Optional[Iterable[IntentRule]] = None) -> None:
        self._rules: List[IntentRule] = list(rules) if rules is not None else default_rules()

    @property
    def rules(self) -> List[IntentRule]:
        return list(self._rules)

    def extract_intent(self, instruction: str, context: Optional[Mapping[str, Any]] = None) -> Intent:
        text = (instruction or "").strip()

        best: Optional[Tuple[IntentRule, Dict[str, Any], float]] = None
        for rule in self._rules:
            entities = self._match_rule(rule, text)
            if entities is None:
                continue
            confidence = self.calculate_confidence(rule, entities)
            if best is None or confidence > best[2]:
                best = (rule, entities, confidence)

        token_words = set()
        if best is not None:
            token_words = {
                str(best[1][name]).lower() for name in (*_TOKEN_FIELDS, "token_b") if best[1].get(name)
            }
        chains = self.extract_chains(text, exclude=token_words)
        if not chains and context and context.get("chain_id"):
            chains = [int(context["chain_id"])]
        protocols = self.extract_protocols(text)
        constraints = self.extract_constraints(text)

        if best is None:
            LOGGER.info(f"No intent rule matched, falling back to QUERY: {text[:80]}")
            return Intent(
                action=ActionType.QUERY,
                entities={},
                chains=chains,
                protocols=protocols,
                constraints=constraints,
                confidence=FALLBACK_CONFIDENCE,
                raw_instruction=instruction,
            )

        rule, entities, confidence = best
        LOGGER.info(f"Intent recognised: {rule.action.value} (confidence {confidence:.2f})")
        LOGGER.debug(f"  Entities: {entities}")
        return Intent(
            action=rule.action,
            entities=entities,
            chains=chains,
            protocols=protocols,
            constraints=constraints,
            confidence=confidence,
            raw_instruction=instruction,
        )

    def _match_rule(self, rule: IntentRule, text: str) -> Optional[Dict[str, Any]]:
        for pattern in rule.patterns:
            match = pattern.search(text)
            if match:
                return self._normalize_entities(rule.action, match.groupdict())
        return None

    def _normalize_entities(self, action: ActionType, groups: Dict[str, Optional[str]]) -> Dict[str, Any]:
        entities: Dict[str, Any] = {
            key: value.strip() for key, value in groups.items() if value is not None and value.strip()
        }

        for field, address_field in _TOKEN_FIELDS.items():
            symbol = entities.get(field)
            if not symbol:
                continue
            if not symbol.lower().startswith("0x"):
                entities[field] = symbol.upper()
            address = token_address_for(symbol)
            if address:
                entities[address_field] = address

        if "token_b" in entities:
            entities["token_b"] = entities["token_b"].upper()

        from_chain = entities.pop("from_chain", None)
        to_chain = entities.pop("to_chain", None)
        network = entities.pop("network", None)
        if from_chain and chain_id_for(from_chain):
            entities["chain_id"] = chain_id_for(from_chain)
        if to_chain and chain_id_for(to_chain):
            entities["to_chain_id"] = chain_id_for(to_chain)
        if network:
            entities["network"] = network.lower()
            if chain_id_for(network):
                entities["chain_id"] = chain_id_for(network)

        if action == ActionType.CLICK and "element" in entities:
            entities["text"] = entities["element"]
        elif action == ActionType.FILL_FORM and "fields" in entities:
            entities["fields"] = parse_form_fields(entities["fields"])
        elif action == ActionType.SCROLL and "direction" in entities:
            entities["direction"] = entities["direction"].lower()
        elif action in (ActionType.CREATE_PLAN, ActionType.ANALYZE_TASK) and "task" in entities:
            entities.setdefault("complexity", "medium")
        elif action == ActionType.COORDINATE_AGENTS:
            entities.setdefault("agents", ["planner", "navigator", "validator"])

        return entities

    @staticmethod
    def calculate_confidence(rule: IntentRule, entities: Mapping[str, Any]) -> float:
        confidence = rule.weight
        if any(not entities.get(name) for name in rule.required):
            confidence *= 0.5
        confidence += 0.1 * sum(1 for name in rule.optional if entities.get(name))
        return max(0.0, min(confidence, 1.0))

    @staticmethod
    def extract_chains(text: str, exclude: Iterable[str] = ()) -> List[int]:
        """Chain ids named in ``text``, in order of first mention.

        Words in ``exclude`` (token symbols such as ETH or MATIC) are not read
        as chain names.
        """
        skipped = {word.lower() for word in exclude}
        chains: List[int] = []
        for match in _CHAIN_WORD_RE.finditer(text):
            if match.group(1).lower() in skipped:
                continue
            chain_id = CHAIN_IDS[match.group(1).lower()]
            if chain_id not in chains:
                chains.append(chain_id)
        return chains

    @staticmethod
    def extract_protocols(text: str) -> List[str]:
        lowered = text.lower()
        return [name for name in PROTOCOLS if name in lowered]

    @staticmethod
    def extract_constraints(text: str) -> Dict[str, Any]:
        constraints: Dict[str, Any] = {}

        slippage = _CONSTRAINT_PATTERNS["slippage"].search(text)
        if slippage:
            constraints["slippage"] = float(slippage.group(1))

        lowered = text.lower()
        for preference, keywords in _PREFERENCES:
            if any(keyword in lowered for keyword in keywords):
                constraints["preference"] = preference
                break

        gas_limit = _CONSTRAINT_PATTERNS["gas_limit"].search(text)
        if gas_limit:
            constraints["gas_limit"] = int(gas_limit.group(1))

        gas_price = _CONSTRAINT_PATTERNS["gas_price"].search(text)
        if gas_price:
            constraints["gas_price"] = gas_price.group(1)

        return constraints

    def _rule_for(self, action: ActionType) -> Optional[IntentRule]:
        for rule in self._rules:
            if rule.action == action:
                return rule
        return None

    def suggest_missing_entities(self, intent: Intent) -> List[str]:
        """Required entities the intent is still missing."""
        rule = self._rule_for(intent.action)
        if rule is None:
            return []
        return [name for name in rule.required if not intent.entities.get(name)]

    def validate_intent(self, intent: Intent) -> bool:
        """True when a rule exists for the action and all its required entities are present."""
        if self._rule_for(intent.action) is None:
            return False
        return not self.suggest_missing_entities(intent)
