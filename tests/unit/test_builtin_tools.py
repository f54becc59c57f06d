"""Tests for the default web3, page and utility tools."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from taskpilot.config.settings import RegistrySettings
from taskpilot.models import RiskLevel
from taskpilot.tools import ToolContext, build_default_registry
from taskpilot.tools.config_loader import ToolConfig


@pytest.fixture
def registry(tmp_path):
    settings = RegistrySettings(backoff_base_ms=0)
    return build_default_registry(settings, ToolConfig(tmp_path / "none.yaml"))


def test_default_tool_set(registry):
    names = {tool.name for tool in registry.list_tools()}

    assert {"check_balance", "send_transaction", "swap_tokens", "navigate_to_url", "wait_for"} <= names
    assert {"get_current_time", "format_number", "calculate_gas_estimate"} <= names
    assert registry.get_tool("send_transaction").risk_level == RiskLevel.HIGH
    assert registry.get_tool("send_transaction").retryable is False
    assert set(registry.categories()) >= {"web3", "browser", "utility"}


@pytest.mark.asyncio
async def test_check_balance_delegates_to_chain(registry):
    chain = MagicMock()
    chain.get_balance = AsyncMock(return_value={"balance": "1.5"})
    context = ToolContext(chain=chain, chain_id=137)

    result = await registry.execute("check_balance", {"address": "0xabc", "token": "ETH"}, context)

    assert result.success
    assert result.data == {"balance": "1.5"}
    chain.get_balance.assert_awaited_once_with("0xabc", "ETH", 137)


@pytest.mark.asyncio
async def test_web3_tool_without_chain_fails(registry):
    result = await registry.execute("switch_network", {"chain_id": 10}, ToolContext())

    assert result.success is False
    assert "No chain adapter configured" in result.error
    assert result.error_type == "ConfigurationError"
    assert result.metadata["attempt"] == 1


@pytest.mark.asyncio
async def test_page_tool_without_page_runs_once(registry):
    result = await registry.execute("navigate_to_url", {"url": "https://example.com"}, ToolContext())

    assert result.success is False
    assert result.error_type == "ConfigurationError"
    assert result.metadata["attempt"] == 1
    assert registry.get_metrics("navigate_to_url").executions == 1


@pytest.mark.asyncio
async def test_navigate_delegates_to_page(registry):
    page = MagicMock()
    page.navigate = AsyncMock(return_value={"url": "https://example.com"})

    result = await registry.execute("navigate_to_url", {"url": "https://example.com"}, ToolContext(page=page))

    assert result.success
    page.navigate.assert_awaited_once_with("https://example.com", None)


@pytest.mark.asyncio
async def test_format_number(registry):
    result = await registry.execute("format_number", {"number": "3.14159", "decimals": 2, "unit": "ETH"})

    assert result.success
    assert result.data["formatted"] == "3.14 ETH"


@pytest.mark.asyncio
async def test_gas_estimate_rejects_low_units(registry):
    result = await registry.execute("calculate_gas_estimate", {"gas_units": 100, "gas_price_gwei": "20"})

    assert result.success is False
    assert "at least 21000" in result.error


@pytest.mark.asyncio
async def test_gas_estimate(registry):
    result = await registry.execute("calculate_gas_estimate", {"gas_units": 21000, "gas_price_gwei": "10"})

    assert result.data["total_cost_eth"] == pytest.approx(0.00021)
