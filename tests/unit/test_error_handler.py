"""Tests for the error taxonomy and error boundary."""

import pytest

from taskpilot.utils import (
    ActionNotImplementedError,
    CircularDependencyError,
    TaskPilotError,
    failure_payload,
    with_error_boundary,
)


class TestFailurePayload:
    def test_known_error_uses_user_message(self):
        payload = failure_payload(ActionNotImplementedError("ADD_LIQUIDITY"))

        assert payload == {
            "success": False,
            "error": "Planning for 'ADD_LIQUIDITY' is not available yet.",
            "error_type": "ActionNotImplementedError",
        }

    def test_unknown_error_is_generic(self):
        payload = failure_payload(KeyError("secret detail"))

        assert payload["error"] == "Execution failed, please try again."
        assert payload["error_type"] == "KeyError"

    def test_user_message_defaults_to_message(self):
        assert TaskPilotError("boom").user_message == "boom"

    def test_cycle_path(self):
        error = CircularDependencyError(["a", "b", "a"])
        assert "a -> b -> a" in str(error)


class TestErrorBoundary:
    def test_sync_function(self):
        @with_error_boundary("divide")
        def divide(a, b):
            return a / b

        assert divide(4, 2) == 2
        assert divide(1, 0)["error_type"] == "ZeroDivisionError"

    @pytest.mark.asyncio
    async def test_async_function_with_factory(self):
        @with_error_boundary("plan", on_error=lambda payload: ("failed", payload["error_type"]))
        async def plan():
            raise ActionNotImplementedError("UNSTAKE")

        assert await plan() == ("failed", "ActionNotImplementedError")

    @pytest.mark.asyncio
    async def test_async_success_passes_through(self):
        @with_error_boundary("noop")
        async def noop():
            return {"success": True}

        assert await noop() == {"success": True}
