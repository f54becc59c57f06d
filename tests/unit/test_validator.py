"""Tests for task completion validation."""

from unittest.mock import AsyncMock, MagicMock

import pytest
from langchain_core.messages import AIMessage, SystemMessage

from taskpilot.config.settings import ValidationSettings
from taskpilot.models import ActionStep, ActionType, ExecutionPlan, Intent, StepStatus, StepType
from taskpilot.validation import (
    CriterionType,
    RetryStrategy,
    Severity,
    StepOutcome,
    TaskValidator,
    ValidationContext,
    ValidationCriterion,
    ValidationResult,
    extract_target_element,
)


@pytest.fixture
def validator():
    return TaskValidator(ValidationSettings())


def _context(successes=1, failures=0, **kwargs):
    outcomes = [StepOutcome(step="click_element", success=True) for _ in range(successes)]
    outcomes += [StepOutcome(step="click_element", success=False, error="boom") for _ in range(failures)]
    return ValidationContext(instruction="do it", outcomes=outcomes, **kwargs)


# completion (1, 0.8) + three failed checks (0, 0.3), (0, 0.3), (0, 0.2) -> 0.5
FAILING_CRITERIA = [
    ValidationCriterion(CriterionType.COMPLETION),
    ValidationCriterion(CriterionType.ELEMENT_EXISTS, "submit"),
    ValidationCriterion(CriterionType.URL_CHANGED, "https://example.com/done"),
    ValidationCriterion(CriterionType.CONTENT_CONTAINS, "Thanks"),
]


class TestAggregation:
    def test_confidence_weighted_vote(self, validator):
        results = [
            ValidationResult(is_valid=True, score=1.0, confidence=0.8),
            ValidationResult(is_valid=False, score=0.0, confidence=0.4),
        ]
        assert validator.aggregate(results) == pytest.approx(0.667, abs=1e-3)

    def test_no_weight_gives_zero(self, validator):
        assert validator.aggregate([]) == 0.0
        assert validator.aggregate([ValidationResult(is_valid=True, score=1.0, confidence=0.0)]) == 0.0

    def test_retry_delays(self, validator):
        assert [validator.retry_delay_ms(k) for k in range(5)] == [2000, 4000, 8000, 16000, 30000]

    def test_retry_strategy(self, validator):
        alternative = ValidationResult(is_valid=False, score=0, confidence=0.3,
                                       retry_strategy=RetryStrategy.ALTERNATIVE)
        plain_failure = ValidationResult(is_valid=False, score=0, confidence=0.3)
        success = ValidationResult(is_valid=True, score=1, confidence=0.8)

        assert validator.retry_strategy([alternative]) == RetryStrategy.ALTERNATIVE
        assert validator.retry_strategy([success, plain_failure]) == RetryStrategy.IMMEDIATE
        assert validator.retry_strategy([plain_failure]) == RetryStrategy.DELAYED


class TestValidate:
    @pytest.mark.asyncio
    async def test_successful_steps_validate(self, validator):
        outcome = await validator.validate("check my balance", _context(successes=2))

        assert outcome.is_valid is True
        assert outcome.confidence == pytest.approx(1.0)
        assert outcome.should_retry is False
        assert outcome.next_retry_delay is None

    @pytest.mark.asyncio
    async def test_partial_failure_recommends_retry_with_backoff(self, validator):
        context = _context(current_url="https://example.com/start", page_content="")

        first = await validator.validate("submit", context, FAILING_CRITERIA)
        second = await validator.validate("submit", context, FAILING_CRITERIA)

        assert first.is_valid is False
        assert first.confidence == pytest.approx(0.5)
        assert first.should_retry is True
        assert first.retry_attempt == 0
        assert first.next_retry_delay == 2000
        assert first.retry_strategy == RetryStrategy.IMMEDIATE
        assert second.retry_attempt == 1
        assert second.next_retry_delay == 4000

    @pytest.mark.asyncio
    async def test_retry_stops_after_max_attempts(self):
        validator = TaskValidator(ValidationSettings(max_attempts=2))
        context = _context(current_url="https://example.com/start")

        outcomes = [await validator.validate("submit", context, FAILING_CRITERIA) for _ in range(3)]

        assert [o.should_retry for o in outcomes] == [True, True, False]
        assert len(validator.get_history("submit")) == 3

    @pytest.mark.asyncio
    async def test_low_confidence_is_not_retried(self, validator):
        outcome = await validator.validate("do it", _context(successes=0, failures=3))

        assert outcome.is_valid is False
        assert outcome.should_retry is False

    @pytest.mark.asyncio
    async def test_history_is_capped_and_clearable(self):
        validator = TaskValidator(ValidationSettings(history_limit=2))
        for _ in range(4):
            await validator.validate("x", _context())

        assert len(validator.get_history("x")) == 2
        validator.clear_history()
        assert validator.get_history("x") == []


class TestCriteria:
    def test_default_criteria(self):
        types = [c.type for c in TaskValidator.default_criteria("click the submit button at https://example.com")]
        assert types == [
            CriterionType.COMPLETION,
            CriterionType.URL_CHANGED,
            CriterionType.CONTENT_CONTAINS,
            CriterionType.ELEMENT_EXISTS,
        ]
        assert [c.type for c in TaskValidator.default_criteria("check my balance")] == [CriterionType.COMPLETION]

    def test_extract_target_element(self):
        assert extract_target_element("click on Login") == "Login"
        assert extract_target_element("scroll down") == ""

    @pytest.mark.asyncio
    async def test_element_exists(self, validator):
        context = _context(page_elements=[
            {"text": "Submit"},
            {"tag_name": "button", "attributes": {"aria-label": "submit form"}},
            {"text": "Cancel"},
        ])

        result = await validator.evaluate(ValidationCriterion(CriterionType.ELEMENT_EXISTS, "submit"), context)

        assert result.is_valid is True
        assert result.confidence == pytest.approx(0.6)

    @pytest.mark.asyncio
    async def test_element_exists_without_elements(self, validator):
        result = await validator.evaluate(ValidationCriterion(CriterionType.ELEMENT_EXISTS, "submit"), _context())

        assert result.is_valid is False
        assert result.confidence == pytest.approx(0.3)

    @pytest.mark.asyncio
    async def test_content_read_from_step_results(self, validator):
        context = ValidationContext(
            instruction="follow",
            outcomes=[StepOutcome(step="extract_content", success=True, result={"content": "You now Follow Alice"})],
        )

        result = await validator.evaluate(ValidationCriterion(CriterionType.CONTENT_CONTAINS, "follow"), context)

        assert result.is_valid is True
        assert result.confidence == pytest.approx(0.8)

    @pytest.mark.asyncio
    async def test_url_changed(self, validator):
        context = _context(current_url="https://example.com/done?ok=1")

        result = await validator.evaluate(ValidationCriterion(CriterionType.URL_CHANGED, "https://example.com/done"),
                                          context)

        assert result.is_valid is True
        assert result.confidence == pytest.approx(0.95)

    @pytest.mark.asyncio
    async def test_form_submitted(self, validator):
        context = _context(page_content="Thank you for signing up")

        result = await validator.evaluate(ValidationCriterion(CriterionType.FORM_SUBMITTED), context)

        assert result.is_valid is True
        assert result.confidence == pytest.approx(0.8)

    @pytest.mark.asyncio
    async def test_criterion_without_target_becomes_error_result(self, validator):
        result = await validator.evaluate(ValidationCriterion(CriterionType.CONTENT_CONTAINS), _context())

        assert result.is_valid is False
        assert result.confidence == 0.0
        assert result.severity == Severity.ERROR


class TestJudge:
    @pytest.mark.asyncio
    async def test_callable_judge(self):
        seen = {}

        async def judge(messages):
            seen["messages"] = messages
            return '{"isValid": true, "confidence": 0.9, "message": "looks done"}'

        validator = TaskValidator(ValidationSettings(), judge=judge)
        outcome = await validator.validate("do it", _context())

        assert outcome.is_valid is True
        assert outcome.results[0].message == "looks done"
        assert isinstance(seen["messages"][0], SystemMessage)
        assert "do it" in seen["messages"][1].content

    @pytest.mark.asyncio
    async def test_chat_model_judge(self):
        judge = MagicMock()
        judge.ainvoke = AsyncMock(return_value=AIMessage(
            content='```json\n{"is_valid": false, "confidence": 0.7, "should_retry": true}\n```'
        ))

        validator = TaskValidator(ValidationSettings(), judge=judge)
        result = await validator.evaluate(ValidationCriterion(CriterionType.COMPLETION), _context())

        assert result.is_valid is False
        assert result.should_retry is True
        judge.ainvoke.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_unparseable_verdict_falls_back_to_heuristic(self):
        validator = TaskValidator(ValidationSettings(), judge=lambda messages: "sure, it worked")

        result = await validator.evaluate(ValidationCriterion(CriterionType.COMPLETION), _context())

        assert result.is_valid is True
        assert result.message.startswith("Heuristic validation")


class TestAssessPlan:
    def _plan(self, *statuses):
        steps = []
        for index, status in enumerate(statuses):
            steps.append(ActionStep(
                id=f"s{index}", type=StepType.CLICK_ELEMENT, status=status,
                attempts=1, duration_ms=100.0,
            ))
        return ExecutionPlan(intent=Intent(action=ActionType.CLICK, confidence=1.0), actions=steps)

    def test_fully_completed_plan(self, validator):
        plan = self._plan(StepStatus.COMPLETED, StepStatus.COMPLETED)
        context = ValidationContext.from_steps("click", plan.actions, current_url="https://example.com")

        report = validator.assess_plan(plan, context)

        assert report.is_valid is True
        assert report.overall_score >= 0.9
        assert report.failed == []
        assert [c.name for c in report.checks] == ["completion", "accuracy", "security", "performance"]

    def test_half_failed_plan(self, validator):
        plan = self._plan(StepStatus.COMPLETED, StepStatus.FAILED)

        report = validator.assess_plan(plan)

        assert report.is_valid is False
        assert report.should_retry is False
        assert {c.name for c in report.failed} >= {"completion", "accuracy"}
        assert "completion" in [c.name for c in report.warnings]

    def test_sensitive_content_fails_security(self, validator):
        plan = self._plan(StepStatus.COMPLETED)
        context = ValidationContext(instruction="x", page_content="Enter your password")

        report = validator.assess_plan(plan, context)

        assert report.is_valid is False
        assert "security" in [c.name for c in report.failed]

    def test_from_steps_skips_pending(self):
        plan = self._plan(StepStatus.COMPLETED, StepStatus.PENDING, StepStatus.FAILED)

        context = ValidationContext.from_steps("x", plan.actions)

        assert [o.success for o in context.outcomes] == [True, False]
