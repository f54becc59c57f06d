"""Page automation tools delegating to the PageAutomation in the call context."""

from __future__ import annotations

from typing import Any, Dict, List

from taskpilot.models import RiskLevel, StepType
from taskpilot.utils.error_handler import ConfigurationError

from ..registry import ToolContext, ToolDefinition


def _page(context: ToolContext):
    if context.page is None:
        raise ConfigurationError("No page automation configured", user_message="No browser page is attached.")
    return context.page


async def navigate_to_url(params: Dict[str, Any], context: ToolContext) -> Any:
    return await _page(context).navigate(params["url"], params.get("timeout"))


async def click_element(params: Dict[str, Any], context: ToolContext) -> Any:
    selector, text = params.get("selector"), params.get("text")
    if not selector and not text:
        raise ValueError("click_element needs a selector or text")
    return await _page(context).click(selector=selector, text=text)


async def fill_form(params: Dict[str, Any], context: ToolContext) -> Any:
    return await _page(context).fill(list(params["fields"]), bool(params.get("submit", False)))


async def extract_content(params: Dict[str, Any], context: ToolContext) -> Any:
    return await _page(context).extract_content(params["selector"])


async def take_screenshot(params: Dict[str, Any], context: ToolContext) -> Any:
    return await _page(context).screenshot(params.get("selector"))


async def scroll_page(params: Dict[str, Any], context: ToolContext) -> Any:
    return await _page(context).scroll(params["direction"])


async def wait_for(params: Dict[str, Any], context: ToolContext) -> Any:
    return await _page(context).wait_for(params.get("condition"), int(params["timeout"]))


def build_page_tools() -> List[ToolDefinition]:
    """Default browser page tool set."""

    def schema(properties: Dict[str, Any], required: List[str]) -> Dict[str, Any]:
        return {"type": "object", "properties": properties, "required": required}

    return [
        ToolDefinition(
            name=StepType.NAVIGATE_TO_URL.value,
            description="Navigate the page to a URL",
            handler=navigate_to_url,
            parameters=schema({"url": {"type": "string"}, "timeout": {"type": "number"}}, ["url"]),
            risk_level=RiskLevel.MEDIUM,
            category="browser",
            timeout_ms=30000,
        ),
        ToolDefinition(
            name=StepType.CLICK_ELEMENT.value,
            description="Click an element by selector or visible text",
            handler=click_element,
            parameters=schema({"selector": {"type": "string"}, "text": {"type": "string"}}, []),
            risk_level=RiskLevel.MEDIUM,
            category="browser",
            timeout_ms=15000,
        ),
        ToolDefinition(
            name=StepType.FILL_FORM.value,
            description="Fill form fields and optionally submit",
            handler=fill_form,
            parameters=schema({"fields": {"type": "array"}, "submit": {"type": "boolean"}}, ["fields"]),
            risk_level=RiskLevel.MEDIUM,
            category="browser",
            timeout_ms=20000,
        ),
        ToolDefinition(
            name=StepType.EXTRACT_CONTENT.value,
            description="Extract text content from the page",
            handler=extract_content,
            parameters=schema({"selector": {"type": "string"}}, ["selector"]),
            risk_level=RiskLevel.LOW,
            category="browser",
            timeout_ms=10000,
        ),
        ToolDefinition(
            name=StepType.TAKE_SCREENSHOT.value,
            description="Capture a screenshot of the page or an element",
            handler=take_screenshot,
            parameters=schema({"selector": {"type": "string"}}, []),
            risk_level=RiskLevel.LOW,
            category="browser",
            timeout_ms=15000,
        ),
        ToolDefinition(
            name=StepType.SCROLL_PAGE.value,
            description="Scroll the page up, down, to top/bottom or to an element",
            handler=scroll_page,
            parameters=schema({"direction": {"type": "string"}}, ["direction"]),
            risk_level=RiskLevel.LOW,
            category="browser",
            timeout_ms=10000,
        ),
        ToolDefinition(
            name=StepType.WAIT_FOR.value,
            description="Wait for a condition or a fixed time",
            handler=wait_for,
            parameters=schema({"condition": {"type": "string"}, "timeout": {"type": "number"}}, ["timeout"]),
            risk_level=RiskLevel.LOW,
            category="utility",
            timeout_ms=60000,
        ),
    ]
