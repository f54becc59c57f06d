"""Tests for tool configuration loader."""

import pytest

from taskpilot.models import RiskLevel
from taskpilot.tools import ToolDefinition, build_default_registry
from taskpilot.tools.config_loader import ToolConfig, load_tool_config


@pytest.fixture
def sample_config(tmp_path):
    """Create a sample tools.yaml config."""
    config_file = tmp_path / "tools.yaml"
    config_file.write_text("""
tools:
  swap_tokens:
    timeout_ms: 5000
    retryable: false
    risk_level: MEDIUM
  take_screenshot:
    enabled: false
  format_number:
    enabled: false
""")
    return config_file


def _definition(name="swap_tokens"):
    return ToolDefinition(name=name, description="Swap", handler=lambda p, c: None, risk_level=RiskLevel.HIGH)


def test_load_config(sample_config):
    """Test loading configuration from file."""
    config = ToolConfig(sample_config)

    assert config.get_tool_settings("swap_tokens")["timeout_ms"] == 5000
    assert config.get_tool_settings("unknown") == {}
    assert config.is_enabled("swap_tokens") is True
    assert config.is_enabled("take_screenshot") is False
    assert sorted(config.get_disabled_tools()) == ["format_number", "take_screenshot"]


def test_apply_overrides(sample_config):
    """Overrides return a modified copy and leave the original untouched."""
    config = ToolConfig(sample_config)
    original = _definition()

    updated = config.apply(original)

    assert updated.timeout_ms == 5000
    assert updated.retryable is False
    assert updated.risk_level == RiskLevel.MEDIUM
    assert original.timeout_ms == 30000
    assert config.apply(_definition("other")).timeout_ms == 30000


def test_configure_drops_disabled(sample_config):
    config = ToolConfig(sample_config)
    tools = config.configure([_definition(), _definition("take_screenshot")])
    assert [t.name for t in tools] == ["swap_tokens"]


def test_missing_file_uses_defaults(tmp_path):
    """Test fallback when config file doesn't exist."""
    config = ToolConfig(tmp_path / "nonexistent.yaml")

    assert config.config == {"tools": {}}
    assert config.is_enabled("anything") is True


def test_invalid_yaml_uses_defaults(tmp_path):
    config_file = tmp_path / "broken.yaml"
    config_file.write_text("tools: [unclosed")

    config = ToolConfig(config_file)

    assert config.config == {"tools": {}}


def test_default_registry_respects_config(sample_config):
    registry = build_default_registry(config=load_tool_config(sample_config))

    assert registry.has_tool("check_balance")
    assert registry.has_tool("get_current_time")
    assert not registry.has_tool("take_screenshot")
    assert not registry.has_tool("format_number")
    assert registry.get_tool("swap_tokens").timeout_ms == 5000


def test_packaged_config_loads():
    config = load_tool_config()

    assert config.is_enabled("send_transaction")
    assert config.get_tool_settings("send_transaction")["retryable"] is False
