"""Task completion validation: weighted criteria vote, retry advice and plan assessment."""

from __future__ import annotations

import inspect
import logging
import re
import time
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Deque, Dict, List, Mapping, Optional, Sequence

from langchain_core.messages import BaseMessage, HumanMessage, SystemMessage
from pydantic import AliasChoices, BaseModel, Field

from taskpilot.config.settings import ValidationSettings
from taskpilot.models import ActionStep, ExecutionPlan, StepStatus
from taskpilot.utils.logging_utils import log_validation
from taskpilot.utils.structured_output import parse_structured

LOGGER = logging.getLogger(__name__)

Judge = Callable[[List[BaseMessage]], Any]

SECURITY_THRESHOLD = 0.8
PERFORMANCE_TIME_BUDGET_MS = 30000

_URL_RE = re.compile(r"https?://\S+")
_CONTENT_KEYWORDS = (
    "follow", "unfollow", "like", "share", "post", "comment",
    "submit", "send", "buy", "sell", "swap", "transfer",
)
_INTERACTIVE_WORDS = ("click", "fill", "input", "select")
_TARGET_PATTERNS = (
    re.compile(r"click\s+(?:on\s+)?([a-zA-Z\s]+)", re.IGNORECASE),
    re.compile(r"fill\s+(?:the\s+)?([a-zA-Z\s]+)", re.IGNORECASE),
    re.compile(r"input\s+(?:into\s+)?([a-zA-Z\s]+)", re.IGNORECASE),
    re.compile(r"find\s+([a-zA-Z\s]+)", re.IGNORECASE),
)
_SUBMISSION_MARKERS = ("thank you", "success", "submitted", "complete", "confirmation", "your form has been")
_SENSITIVE_PATTERNS = (
    re.compile(r"private[_\s]?key", re.IGNORECASE),
    re.compile(r"secret", re.IGNORECASE),
    re.compile(r"password", re.IGNORECASE),
    re.compile(r"mnemonic", re.IGNORECASE),
)

COMPLETION_SYSTEM_PROMPT = """You validate whether an automation task was completed.

Judge the execution results against the original instruction: was the main
objective accomplished, is the page or wallet in the expected state, and were
there critical failures?

Reply with one JSON object:
{"is_valid": true|false, "confidence": 0.0-1.0, "message": "...",
 "should_retry": true|false, "retry_strategy": "immediate|delayed|alternative",
 "suggestions": ["..."]}"""


class CriterionType(str, Enum):
    COMPLETION = "completion"
    ELEMENT_EXISTS = "element_exists"
    CONTENT_CONTAINS = "content_contains"
    URL_CHANGED = "url_changed"
    FORM_SUBMITTED = "form_submitted"


class Severity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class RetryStrategy(str, Enum):
    IMMEDIATE = "immediate"
    DELAYED = "delayed"
    ALTERNATIVE = "alternative"


@dataclass
class ValidationCriterion:
    type: CriterionType
    target: Optional[str] = None


@dataclass
class StepOutcome:
    """What one executed step produced, as seen by the validator."""

    step: str
    success: bool
    result: Any = None
    error: Optional[str] = None


@dataclass
class ValidationContext:
    """Evidence collected after executing an instruction."""

    instruction: str
    outcomes: List[StepOutcome] = field(default_factory=list)
    current_url: str = ""
    page_elements: List[Mapping[str, Any]] = field(default_factory=list)
    page_content: Optional[str] = None

    @classmethod
    def from_steps(cls, instruction: str, steps: Sequence[ActionStep], **kwargs: Any) -> "ValidationContext":
        outcomes = [
            StepOutcome(step=step.type.value, success=step.status == StepStatus.COMPLETED,
                        result=step.result, error=step.error)
            for step in steps
            if step.status != StepStatus.PENDING
        ]
        return cls(instruction=instruction, outcomes=outcomes, **kwargs)

    def content(self) -> str:
        """Page text: explicit content first, else the first result carrying content/text."""
        if self.page_content is not None:
            return self.page_content
        for outcome in self.outcomes:
            result = outcome.result
            if not isinstance(result, Mapping):
                continue
            if result.get("content") or result.get("text"):
                return str(result.get("content") or result.get("text"))
            data = result.get("data")
            if isinstance(data, Mapping) and data.get("content"):
                return str(data["content"])
        return ""


@dataclass
class ValidationResult:
    is_valid: bool
    score: float
    confidence: float
    message: str = ""
    severity: Severity = Severity.INFO
    should_retry: bool = False
    retry_strategy: RetryStrategy = RetryStrategy.DELAYED
    suggestions: List[str] = field(default_factory=list)


@dataclass
class ValidationOutcome:
    """Aggregated verdict for one instruction plus retry advice."""

    is_valid: bool
    confidence: float
    message: str
    should_retry: bool
    retry_attempt: int
    next_retry_delay: Optional[int] = None
    retry_strategy: RetryStrategy = RetryStrategy.DELAYED
    suggestions: List[str] = field(default_factory=list)
    results: List[ValidationResult] = field(default_factory=list)
    timestamp: float = field(default_factory=time.time)


class JudgeVerdict(BaseModel):
    """Shape of the model's completion verdict."""

    is_valid: bool = Field(validation_alias=AliasChoices("is_valid", "isValid"))
    confidence: float = Field(ge=0.0, le=1.0)
    message: str = ""
    should_retry: bool = Field(default=False, validation_alias=AliasChoices("should_retry", "shouldRetry"))
    retry_strategy: RetryStrategy = Field(
        default=RetryStrategy.DELAYED, validation_alias=AliasChoices("retry_strategy", "retryStrategy")
    )
    suggestions: List[str] = Field(default_factory=list)


def _clamp(value: float) -> float:
    return max(0.0, min(float(value), 1.0))


class TaskValidator:
    """Scores execution evidence against criteria and advises on retries.

    Each criterion yields a result with its own confidence. The verdict is a
    confidence-weighted vote, ``sum(score * confidence) / sum(confidence)``,
    passing at ``pass_threshold``. Every verdict is recorded per instruction
    and the number of earlier verdicts is the retry attempt.
    """

    def __init__(self, settings: Optional[ValidationSettings] = None, judge: Optional[Judge] = None):
        self.settings = settings or ValidationSettings()
        self.judge = judge
        self._history: Dict[str, Deque[ValidationOutcome]] = {}

    async def validate(
        self,
        instruction: str,
        context: ValidationContext,
        criteria: Optional[Sequence[ValidationCriterion]] = None,
    ) -> ValidationOutcome:
        LOGGER.info(f"Validating '{instruction[:80]}' with {len(context.outcomes)} step outcome(s)")
        chosen = list(criteria) if criteria is not None else self.default_criteria(instruction)

        results = []
        for criterion in chosen:
            results.append(await self.evaluate(criterion, context))

        outcome = self._decide(instruction, results)
        self.record(instruction, outcome)
        log_validation(LOGGER, instruction, outcome)
        return outcome

    # ------------------------------------------------------------------
    # Criteria
    # ------------------------------------------------------------------

    @staticmethod
    def default_criteria(instruction: str) -> List[ValidationCriterion]:
        criteria = [ValidationCriterion(CriterionType.COMPLETION)]
        lowered = instruction.lower()

        url = _URL_RE.search(instruction)
        if url:
            criteria.append(ValidationCriterion(CriterionType.URL_CHANGED, url.group(0)))

        for keyword in _CONTENT_KEYWORDS:
            if keyword in lowered:
                criteria.append(ValidationCriterion(CriterionType.CONTENT_CONTAINS, keyword))
                break

        if any(word in lowered for word in _INTERACTIVE_WORDS):
            target = extract_target_element(instruction)
            if target:
                criteria.append(ValidationCriterion(CriterionType.ELEMENT_EXISTS, target))

        return criteria

    async def evaluate(self, criterion: ValidationCriterion, context: ValidationContext) -> ValidationResult:
        try:
            if criterion.type == CriterionType.COMPLETION:
                return await self._check_completion(context)
            if criterion.type == CriterionType.ELEMENT_EXISTS:
                return self._check_element_exists(criterion, context)
            if criterion.type == CriterionType.CONTENT_CONTAINS:
                return self._check_content_contains(criterion, context)
            if criterion.type == CriterionType.URL_CHANGED:
                return self._check_url_changed(criterion, context)
            return self._check_form_submitted(context)
        except ValueError as e:
            LOGGER.warning(f"Criterion {criterion.type.value} could not be evaluated: {e}")
            return ValidationResult(
                is_valid=False,
                score=0.0,
                confidence=0.0,
                message=f"Criterion validation failed: {e}",
                severity=Severity.ERROR,
                should_retry=True,
            )

    async def _check_completion(self, context: ValidationContext) -> ValidationResult:
        if self.judge is None:
            return self.heuristic_completion(context)
        try:
            reply = await self._ask_judge(self.completion_messages(context))
            verdict = parse_structured(reply, JudgeVerdict)
        except Exception as e:
            LOGGER.warning(f"Completion judge unavailable, using heuristic: {e}")
            return self.heuristic_completion(context)

        return ValidationResult(
            is_valid=verdict.is_valid,
            score=1.0 if verdict.is_valid else 0.0,
            confidence=verdict.confidence,
            message=verdict.message or "Completion judged by model",
            severity=Severity.INFO if verdict.is_valid else Severity.WARNING,
            should_retry=verdict.should_retry,
            retry_strategy=verdict.retry_strategy,
            suggestions=list(verdict.suggestions),
        )

    async def _ask_judge(self, messages: List[BaseMessage]) -> str:
        if hasattr(self.judge, "ainvoke"):
            reply = await self.judge.ainvoke(messages)
        else:
            reply = self.judge(messages)
            if inspect.isawaitable(reply):
                reply = await reply
        return str(getattr(reply, "content", reply))

    @staticmethod
    def completion_messages(context: ValidationContext) -> List[BaseMessage]:
        summary = "\n".join(
            f"- {o.step}: {'SUCCESS' if o.success else 'FAILED'}{f' ({o.error})' if o.error else ''}"
            for o in context.outcomes
        ) or "- no steps executed"
        user_prompt = (
            f"Original instruction: \"{context.instruction}\"\n\n"
            f"Current URL: {context.current_url or 'n/a'}\n"
            f"Steps executed: {len(context.outcomes)}\n"
            f"Execution results:\n{summary}\n\n"
            f"Page content summary: {context.content()[:500]}"
        )
        return [SystemMessage(content=COMPLETION_SYSTEM_PROMPT), HumanMessage(content=user_prompt)]

    @staticmethod
    def heuristic_completion(context: ValidationContext) -> ValidationResult:
        total = len(context.outcomes)
        succeeded = sum(1 for o in context.outcomes if o.success)
        rate = succeeded / total if total else 0.0
        is_valid = rate >= 0.7
        return ValidationResult(
            is_valid=is_valid,
            score=1.0 if is_valid else 0.0,
            confidence=min(0.8, rate),
            message=f"Heuristic validation: {succeeded}/{total} steps succeeded ({round(rate * 100)}%)",
            severity=Severity.INFO if is_valid else Severity.WARNING,
            should_retry=not is_valid and rate > 0.3,
        )

    @staticmethod
    def _check_element_exists(criterion: ValidationCriterion, context: ValidationContext) -> ValidationResult:
        if not criterion.target:
            raise ValueError("element_exists needs a target")
        if not context.page_elements:
            return ValidationResult(
                is_valid=False, score=0.0, confidence=0.3,
                message="No page elements available for validation",
                should_retry=True,
            )

        target = criterion.target.lower()
        found = [element for element in context.page_elements if _element_matches(element, target)]
        is_valid = bool(found)
        confidence = min(0.9, 0.3 * len(found))
        return ValidationResult(
            is_valid=is_valid,
            score=1.0 if is_valid else 0.0,
            confidence=confidence,
            message=(f"Found {len(found)} matching elements for \"{criterion.target}\"" if is_valid
                     else f"No elements found matching \"{criterion.target}\""),
            severity=Severity.INFO if is_valid else Severity.WARNING,
            should_retry=not is_valid and confidence < 0.5,
            retry_strategy=RetryStrategy.ALTERNATIVE,
        )

    @staticmethod
    def _check_content_contains(criterion: ValidationCriterion, context: ValidationContext) -> ValidationResult:
        if not criterion.target:
            raise ValueError("content_contains needs a target")
        found = criterion.target.lower() in context.content().lower()
        return ValidationResult(
            is_valid=found,
            score=1.0 if found else 0.0,
            confidence=0.8 if found else 0.2,
            message=(f"Page contains \"{criterion.target}\"" if found
                     else f"Page does not contain \"{criterion.target}\""),
            severity=Severity.INFO if found else Severity.WARNING,
            should_retry=not found,
        )

    @staticmethod
    def _check_url_changed(criterion: ValidationCriterion, context: ValidationContext) -> ValidationResult:
        if not criterion.target:
            raise ValueError("url_changed needs a target URL")
        current = context.current_url
        matches = bool(current) and (current == criterion.target or criterion.target in current)
        return ValidationResult(
            is_valid=matches,
            score=1.0 if matches else 0.0,
            confidence=0.95 if matches else 0.3,
            message=(f"URL matches expected: {current}" if matches
                     else f"URL does not match expected. Current: {current or 'n/a'}, expected: {criterion.target}"),
            severity=Severity.INFO if matches else Severity.WARNING,
            should_retry=not matches,
        )

    @staticmethod
    def _check_form_submitted(context: ValidationContext) -> ValidationResult:
        content = context.content().lower()
        has_marker = any(marker in content for marker in _SUBMISSION_MARKERS)
        navigated = any("navigate" in o.step and o.success for o in context.outcomes)
        is_valid = has_marker or navigated
        confidence = 0.8 if has_marker else (0.6 if navigated else 0.3)
        if is_valid:
            message = f"Form submission detected ({'success message' if has_marker else 'navigation'})"
        else:
            message = "No form submission indicators found"
        return ValidationResult(
            is_valid=is_valid,
            score=1.0 if is_valid else 0.0,
            confidence=confidence,
            message=message,
            severity=Severity.INFO if is_valid else Severity.WARNING,
            should_retry=not is_valid,
        )

    # ------------------------------------------------------------------
    # Aggregation and retry advice
    # ------------------------------------------------------------------

    @staticmethod
    def aggregate(results: Sequence[ValidationResult]) -> float:
        """Confidence-weighted vote over ``results`` (0 when nothing carries weight)."""
        total_weight = sum(r.confidence for r in results)
        if total_weight <= 0:
            return 0.0
        return _clamp(sum(r.score * r.confidence for r in results) / total_weight)

    @staticmethod
    def retry_strategy(results: Sequence[ValidationResult]) -> RetryStrategy:
        failed = [r for r in results if not r.is_valid]
        alternative = sum(1 for r in failed if r.retry_strategy == RetryStrategy.ALTERNATIVE)
        if alternative > len(failed) / 2:
            return RetryStrategy.ALTERNATIVE
        if any(r.is_valid for r in results):
            return RetryStrategy.IMMEDIATE
        return RetryStrategy.DELAYED

    def retry_delay_ms(self, attempt: int) -> int:
        return min(self.settings.base_delay_ms * (2 ** attempt), self.settings.max_delay_ms)

    def _decide(self, instruction: str, results: List[ValidationResult]) -> ValidationOutcome:
        confidence = self.aggregate(results)
        is_valid = bool(results) and confidence >= self.settings.pass_threshold
        attempt = len(self._history.get(instruction, ()))
        suggestions = [s for r in results for s in r.suggestions]
        message = "; ".join(r.message for r in results if r.message) or "No validation results available"

        should_retry = not (
            is_valid
            or attempt >= self.settings.max_attempts
            or confidence < self.settings.min_retry_confidence
        )
        return ValidationOutcome(
            is_valid=is_valid,
            confidence=confidence,
            message=message,
            should_retry=should_retry,
            retry_attempt=attempt,
            next_retry_delay=self.retry_delay_ms(attempt) if should_retry else None,
            retry_strategy=self.retry_strategy(results),
            suggestions=suggestions or (["Wait and retry validation"] if should_retry else []),
            results=results,
        )

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    def record(self, instruction: str, outcome: ValidationOutcome) -> None:
        history = self._history.setdefault(instruction, deque(maxlen=self.settings.history_limit))
        history.append(outcome)

    def get_history(self, instruction: str) -> List[ValidationOutcome]:
        return list(self._history.get(instruction, ()))

    def clear_history(self) -> None:
        self._history.clear()
        LOGGER.info("Validation history cleared")

    # ------------------------------------------------------------------
    # Plan assessment
    # ------------------------------------------------------------------

    def assess_plan(self, plan: ExecutionPlan, context: Optional[ValidationContext] = None) -> "ValidationReport":
        """Weighted completion/accuracy/security/performance report for an executed plan."""
        checks = [
            ("completion", 0.4, True, self._assess_completion(plan)),
            ("accuracy", 0.3, True, self._assess_accuracy(plan)),
            ("security", 0.2, True, self._assess_security(context)),
            ("performance", 0.1, False, self._assess_performance(plan)),
        ]

        report = ValidationReport(plan_id=plan.id)
        weighted = 0.0
        total_weight = 0.0
        for name, weight, required, result in checks:
            check = CheckResult(name=name, weight=weight, required=required, result=result)
            report.checks.append(check)
            if result.is_valid:
                report.passed.append(check)
                weighted += result.score * weight
            else:
                report.failed.append(check)
                if result.severity != Severity.ERROR:
                    weighted += result.score * weight
            if result.severity == Severity.WARNING:
                report.warnings.append(check)
            total_weight += weight

        report.overall_score = _clamp(weighted / total_weight) if total_weight else 0.0
        blocking = [c for c in report.failed if c.required and c.result.severity == Severity.ERROR]
        threshold = self.settings.completion_threshold
        report.is_valid = report.overall_score >= threshold and not blocking
        report.should_retry = not report.is_valid and 0.7 <= report.overall_score < threshold
        LOGGER.info(
            f"Plan {plan.id} assessment: score={report.overall_score:.2f} valid={report.is_valid} "
            f"failed={[c.name for c in report.failed]}"
        )
        return report

    @staticmethod
    def _assess_completion(plan: ExecutionPlan) -> ValidationResult:
        total = len(plan.actions)
        completed = sum(1 for s in plan.actions if s.status == StepStatus.COMPLETED)
        ratio = completed / total if total else 0.0
        if ratio == 1.0:
            severity = Severity.INFO
        elif ratio >= 0.5:
            severity = Severity.WARNING
        else:
            severity = Severity.ERROR
        return ValidationResult(
            is_valid=ratio == 1.0,
            score=ratio,
            confidence=1.0,
            message=f"{completed}/{total} steps completed",
            severity=severity,
        )

    @staticmethod
    def _assess_accuracy(plan: ExecutionPlan) -> ValidationResult:
        attempted = [s for s in plan.actions if s.status in (StepStatus.COMPLETED, StepStatus.FAILED)]
        succeeded = sum(1 for s in attempted if s.status == StepStatus.COMPLETED)
        accuracy = succeeded / max(len(attempted), 1)
        if accuracy >= 0.8:
            severity = Severity.INFO
        elif accuracy >= 0.6:
            severity = Severity.WARNING
        else:
            severity = Severity.ERROR
        return ValidationResult(
            is_valid=accuracy >= 0.8,
            score=accuracy,
            confidence=1.0,
            message=f"{round(accuracy * 100)}% of attempted steps succeeded",
            severity=severity,
        )

    @staticmethod
    def _assess_security(context: Optional[ValidationContext]) -> ValidationResult:
        passed: List[bool] = []
        url = context.current_url if context else ""
        if url:
            passed.append(bool(re.match(r"^https?://.+", url)) and "malicious" not in url.lower())
            passed.append(url.startswith("https://"))
        content = " ".join(
            [context.content()] + [str(e.get("text", "")) for e in context.page_elements]
        ) if context else ""
        passed.append(not any(pattern.search(content) for pattern in _SENSITIVE_PATTERNS))

        score = sum(passed) / len(passed)
        is_valid = score >= SECURITY_THRESHOLD
        return ValidationResult(
            is_valid=is_valid,
            score=score,
            confidence=1.0,
            message=f"{sum(passed)}/{len(passed)} security checks passed",
            severity=Severity.INFO if is_valid else Severity.ERROR,
        )

    @staticmethod
    def _assess_performance(plan: ExecutionPlan) -> ValidationResult:
        duration = sum(s.duration_ms or 0.0 for s in plan.actions)
        time_score = max(0.0, 1 - duration / PERFORMANCE_TIME_BUDGET_MS)
        attempted = [s for s in plan.actions if s.attempts]
        failures = sum(max(s.attempts - 1, 0) + (1 if s.status == StepStatus.FAILED else 0) for s in attempted)
        attempts = sum(s.attempts for s in attempted)
        error_score = max(0.0, 1 - failures / max(attempts, 1))
        score = (time_score + error_score) / 2
        return ValidationResult(
            is_valid=score >= 0.7,
            score=score,
            confidence=1.0,
            message=f"Performance score: {round(score * 100)}%",
            severity=Severity.INFO if score >= 0.7 else Severity.WARNING,
        )


@dataclass
class CheckResult:
    name: str
    weight: float
    required: bool
    result: ValidationResult


@dataclass
class ValidationReport:
    plan_id: str
    overall_score: float = 0.0
    is_valid: bool = False
    should_retry: bool = False
    checks: List[CheckResult] = field(default_factory=list)
    passed: List[CheckResult] = field(default_factory=list)
    failed: List[CheckResult] = field(default_factory=list)
    warnings: List[CheckResult] = field(default_factory=list)


def extract_target_element(instruction: str) -> str:
    """Best-effort element name from "click the submit button" style text."""
    for pattern in _TARGET_PATTERNS:
        match = pattern.search(instruction)
        if match and match.group(1).strip():
            return match.group(1).strip()
    return ""


def _element_matches(element: Mapping[str, Any], target: str) -> bool:
    if target in str(element.get("text", "")).lower():
        return True
    if target in str(element.get("tag_name", element.get("tagName", ""))).lower():
        return True
    attributes = element.get("attributes") or {}
    return any(target in str(value).lower() for value in attributes.values())
