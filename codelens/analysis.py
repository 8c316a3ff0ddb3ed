"""
Code analysis: prompt construction, the gateway call and result bookkeeping.
"""

import logging
from typing import Any, Dict, Iterable, List

from pydantic import BaseModel

from codelens.constants import ANALYSIS_SYSTEM_PROMPT, ANALYSIS_TEMPERATURE
from codelens.gateway import GatewayClient, Message
from codelens.normalizer import AnalysisResult, normalize


class DashboardStats(BaseModel):
    total_submissions: int = 0
    average_score: int = 0
    issues_found: int = 0
    optimizations: int = 0


def build_analysis_messages(code: str, language: str) -> List[Message]:
    return [
        {"role": "system", "content": ANALYSIS_SYSTEM_PROMPT.format(language=language)},
        {"role": "user", "content": f"Analyze this {language} code:\n\n{code}"},
    ]


async def analyze_code(gateway: GatewayClient, code: str, language: str) -> AnalysisResult:
    """
    Ask the model to review ``code`` and normalize its answer.

    Gateway failures propagate to the caller; a malformed answer does not,
    it becomes the fallback analysis of ``code``.
    """
    content = await gateway.complete(
        build_analysis_messages(code, language),
        temperature=ANALYSIS_TEMPERATURE,
    )
    result = normalize(content, code)
    logging.info(f"Analyzed {len(code)} characters of {language}, score {result.score}")
    return result


def build_submission_record(
    user_id: str,
    code: str,
    language: str,
    result: AnalysisResult,
) -> Dict[str, Any]:
    """Flatten an analysis into the record stored in code_submissions."""
    wire = result.to_wire()
    return {
        "user_id": user_id,
        "original_code": code,
        "language": language,
        "score": result.score,
        "issues_found": wire["issues"],
        "review_result": wire["review"],
        "optimized_code": result.optimized_code,
        "rewritten_code": result.rewritten_code,
    }


def compute_dashboard_stats(submissions: Iterable[Dict[str, Any]]) -> DashboardStats:
    submissions = list(submissions)
    scores = [s["score"] for s in submissions if s.get("score") is not None]
    average = int(sum(scores) / len(scores) + 0.5) if scores else 0

    return DashboardStats(
        total_submissions=len(submissions),
        average_score=average,
        issues_found=sum(len(s.get("issues_found") or []) for s in submissions),
        optimizations=sum(1 for s in submissions if s.get("optimized_code")),
    )
