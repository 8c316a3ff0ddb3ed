"""
Normalization of model output into a typed code analysis.

The analysis prompt asks the model for a bare JSON document, but models
wrap it in Markdown fences, add stray fields or answer in prose. Whatever
comes back, ``normalize`` returns a complete ``AnalysisResult``.
"""

import json
import logging
import math
import re
from dataclasses import dataclass
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field

from codelens.constants import FALLBACK_SCORE, FALLBACK_SUMMARY

_LEADING_FENCE = re.compile(r"^\s*```[\w.+#-]*[ \t]*\r?\n?")
_TRAILING_FENCE = re.compile(r"\r?\n?[ \t]*```\s*$")


def _coerce_score(value: Any) -> Any:
    # Models sometimes answer 87.5 or 104; keep the score on the 0-100 scale.
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)) and math.isfinite(value):
        return max(0, min(100, int(round(value))))
    return value


def _lower(value: Any) -> Any:
    return value.strip().lower() if isinstance(value, str) else value


Score = Annotated[int, BeforeValidator(_coerce_score)]
IssueType = Annotated[Literal["bug", "security", "performance", "style", "logic"], BeforeValidator(_lower)]
Severity = Annotated[Literal["critical", "high", "medium", "low"], BeforeValidator(_lower)]


class _WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class ScoreBreakdown(_WireModel):
    quality: Score
    efficiency: Score
    security: Score
    readability: Score
    best_practices: Score = Field(..., alias="bestPractices")


class Issue(_WireModel):
    type: IssueType
    severity: Severity
    line: Optional[int] = None
    message: str
    suggestion: Optional[str] = None


class ReviewSummary(_WireModel):
    summary: str
    improvements: List[str] = Field(default_factory=list)
    security_issues: List[str] = Field(default_factory=list, alias="securityIssues")
    performance_issues: List[str] = Field(default_factory=list, alias="performanceIssues")
    best_practices: List[str] = Field(default_factory=list, alias="bestPractices")


class AnalysisResult(_WireModel):
    score: Score
    scores: ScoreBreakdown
    issues: List[Issue] = Field(default_factory=list)
    review: ReviewSummary
    optimized_code: str = Field(..., alias="optimizedCode")
    rewritten_code: str = Field(..., alias="rewrittenCode")

    def to_wire(self) -> Dict[str, Any]:
        """Serialize with the camelCase field names used by the web client."""
        return self.model_dump(by_alias=True, exclude_none=True)


@dataclass(frozen=True)
class Parsed:
    result: AnalysisResult


@dataclass(frozen=True)
class Fallback:
    reason: str


ParseOutcome = Union[Parsed, Fallback]


def strip_code_fences(raw: str) -> str:
    """Remove a leading and a trailing Markdown fence marker, if present."""
    text = _LEADING_FENCE.sub("", raw, count=1)
    text = _TRAILING_FENCE.sub("", text, count=1)
    return text.strip()


def _score_field(value: Any) -> int:
    if isinstance(value, str):
        try:
            value = float(value)
        except ValueError:
            return FALLBACK_SCORE
    value = _coerce_score(value)
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    return FALLBACK_SCORE


def _text_field(value: Any, default: str) -> str:
    return value if isinstance(value, str) else default


def _text_list(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, str)]


def _object_field(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _issue_list(value: Any) -> List[Issue]:
    if not isinstance(value, list):
        return []
    issues = []
    for entry in value:
        try:
            issues.append(Issue.model_validate(entry))
        except ValueError as e:
            logging.debug(f"Dropping malformed issue {entry!r}: {e}")
    return issues


def analysis_from_document(document: Dict[str, Any], source_code: str = "") -> AnalysisResult:
    """
    Build an AnalysisResult from a decoded analysis document.

    The document is taken as the model wrote it. A field with the wrong type
    falls back on its own: scores read as the fallback score, text as empty,
    lists as empty, the code fields as ``source_code``. Issue entries that
    do not fit are dropped one by one.
    """
    scores = _object_field(document.get("scores"))
    review = _object_field(document.get("review"))

    return AnalysisResult(
        score=_score_field(document.get("score")),
        scores=ScoreBreakdown(
            quality=_score_field(scores.get("quality")),
            efficiency=_score_field(scores.get("efficiency")),
            security=_score_field(scores.get("security")),
            readability=_score_field(scores.get("readability")),
            best_practices=_score_field(scores.get("bestPractices")),
        ),
        issues=_issue_list(document.get("issues")),
        review=ReviewSummary(
            summary=_text_field(review.get("summary"), ""),
            improvements=_text_list(review.get("improvements")),
            security_issues=_text_list(review.get("securityIssues")),
            performance_issues=_text_list(review.get("performanceIssues")),
            best_practices=_text_list(review.get("bestPractices")),
        ),
        optimized_code=_text_field(document.get("optimizedCode"), source_code),
        rewritten_code=_text_field(document.get("rewrittenCode"), source_code),
    )


def parse_analysis(raw: Optional[str], source_code: str = "") -> ParseOutcome:
    if not isinstance(raw, str):
        return Fallback("response is not text")

    text = strip_code_fences(raw)
    if not text:
        return Fallback("empty response")

    try:
        document = json.loads(text)
    except ValueError as e:
        return Fallback(f"invalid JSON: {e}")

    if not isinstance(document, dict):
        return Fallback(f"expected a JSON object, got {type(document).__name__}")

    return Parsed(analysis_from_document(document, source_code))


def build_fallback(source_code: str) -> AnalysisResult:
    """The fixed result used when the model output cannot be trusted."""
    return AnalysisResult(
        score=FALLBACK_SCORE,
        scores=ScoreBreakdown(
            quality=FALLBACK_SCORE,
            efficiency=FALLBACK_SCORE,
            security=FALLBACK_SCORE,
            readability=FALLBACK_SCORE,
            best_practices=FALLBACK_SCORE,
        ),
        issues=[],
        review=ReviewSummary(summary=FALLBACK_SUMMARY),
        optimized_code=source_code,
        rewritten_code=source_code,
    )


def normalize(raw: Optional[str], fallback_source_code: str) -> AnalysisResult:
    """
    Convert raw model output into an AnalysisResult. Never raises.

    Args:
        raw: Full text of the model response.
        fallback_source_code: The submitted code, used for both code fields
            of the fallback result and for code fields the document lacks.

    Returns:
        The parsed analysis, or the fallback result if the text is not a
        JSON object.
    """
    outcome = parse_analysis(raw, fallback_source_code)
    if isinstance(outcome, Parsed):
        return outcome.result

    preview = raw[:500] if isinstance(raw, str) else raw
    logging.warning(f"Failed to parse AI response, using fallback ({outcome.reason[:200]}): {preview!r}")
    return build_fallback(fallback_source_code)
