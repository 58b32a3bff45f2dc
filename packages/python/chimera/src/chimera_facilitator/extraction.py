"""Heuristics that turn free-form model output into code, issues and scores."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Protocol

logger = logging.getLogger(__name__)

MAX_ISSUES = 5

_FENCED_BLOCK = re.compile(r"```[A-Za-z0-9_+-]*[ \t]*\n(.*?)```", re.DOTALL)
_CONTRACT_MARKERS = ("pragma solidity", "contract ")
_SPDX_ANCHOR = re.compile(r"(//\s*SPDX-License-Identifier.*)", re.DOTALL)
_PRAGMA_ANCHOR = re.compile(r"(pragma\s+solidity.*)", re.DOTALL)

_ISSUE_PATTERNS = [
    re.compile(r"critical[:\s]+([^\n]+)", re.IGNORECASE),
    re.compile(r"high severity[:\s]+([^\n]+)", re.IGNORECASE),
    re.compile(r"medium severity[:\s]+([^\n]+)", re.IGNORECASE),
    re.compile(r"vulnerability[:\s]+([^\n]+)", re.IGNORECASE),
    re.compile(r"issue[:\s]+([^\n]+)", re.IGNORECASE),
    re.compile(r"warning[:\s]+([^\n]+)", re.IGNORECASE),
]

_EXPLICIT_SCORE = re.compile(r"score[:\s]+(\d+)", re.IGNORECASE)
_SEVERITY_PATTERNS = {
    "critical": re.compile(r"critical", re.IGNORECASE),
    "high": re.compile(r"high severity", re.IGNORECASE),
    "medium": re.compile(r"medium severity", re.IGNORECASE),
}
_SEVERITY_PENALTY = {"critical": 30, "high": 15, "medium": 5}


class CodeExtractor(Protocol):
    def extract(self, response: str) -> Optional[str]:
        """Return the source found in ``response`` or ``None``."""


def _trim_to_last_brace(code: str) -> Optional[str]:
    last = code.rfind("}")
    if last <= 0:
        return None
    return code[: last + 1].strip()


class SolidityExtractor:
    """Fenced block with a contract marker, else an SPDX or pragma anchor."""

    def extract(self, response: str) -> Optional[str]:
        if not response:
            return None

        for match in _FENCED_BLOCK.finditer(response):
            block = match.group(1).strip()
            if any(marker in block for marker in _CONTRACT_MARKERS):
                code = _trim_to_last_brace(block)
                if code:
                    logger.debug("extracted code from fenced block")
                    return code

        for label, anchor in (("SPDX", _SPDX_ANCHOR), ("pragma", _PRAGMA_ANCHOR)):
            match = anchor.search(response)
            if match:
                code = _trim_to_last_brace(match.group(1))
                if code:
                    logger.debug("extracted code starting from %s", label)
                    return code

        logger.warning("could not extract Solidity code; preview=%r", response[:200])
        return None


def extract_issues(report: str, limit: int = MAX_ISSUES) -> List[str]:
    issues: List[str] = []
    for pattern in _ISSUE_PATTERNS:
        for match in pattern.finditer(report or ""):
            text = match.group(1).strip()
            if text:
                issues.append(text)

    if not issues:
        sentences = (report or "").split(".")[:3]
        issues.extend(s.strip() for s in sentences if len(s.strip()) > 10)

    return issues[:limit]


def create_feedback_prompt(original_prompt: str, issues: List[str]) -> str:
    issue_list = "\n".join(f"{index}. {issue}" for index, issue in enumerate(issues, start=1))
    return (
        f"{original_prompt}\n\n"
        "IMPORTANT: The previous generation had the following security issues that MUST be fixed:\n"
        f"{issue_list}\n\n"
        "Please generate a corrected version that addresses all these issues while maintaining "
        "the original requirements.\n"
        "Focus on security best practices and avoid common vulnerabilities."
    )


@dataclass
class AuditResult:
    score: int
    report: str
    severity_counts: Dict[str, int] = field(default_factory=dict)
    score_source: str = "explicit"

    def to_dict(self) -> Dict[str, object]:
        return {
            "score": self.score,
            "report": self.report,
            "severityCounts": dict(self.severity_counts),
            "scoreSource": self.score_source,
        }


def severity_counts(report: str) -> Dict[str, int]:
    return {name: len(pattern.findall(report or "")) for name, pattern in _SEVERITY_PATTERNS.items()}


def score_from_report(report: str) -> AuditResult:
    counts = severity_counts(report)
    explicit = _EXPLICIT_SCORE.search(report or "")
    if explicit:
        score = max(0, min(100, int(explicit.group(1))))
        return AuditResult(score=score, report=report, severity_counts=counts)

    score = 100 - sum(_SEVERITY_PENALTY[name] * count for name, count in counts.items())
    score = max(0, min(100, score))
    logger.info("audit report has no explicit score; keyword fallback score=%s counts=%s", score, counts)
    return AuditResult(score=score, report=report, severity_counts=counts, score_source="fallback")
