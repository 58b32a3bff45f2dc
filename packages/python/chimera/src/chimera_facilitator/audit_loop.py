"""Generate, audit, and regenerate with feedback until the score clears the gate.

``AuditLoop.generate_with_audit`` is an async generator of progress events.
Every event is a JSON-ready dict with a ``type`` key:

``attempt``  an attempt starts (``attempt``, ``maxRetries``)
``status``   free-text progress
``code_chunk``  raw model output as it streams (``data``)
``code_complete``  extracted source (``code``)
``audit_complete``  auditor verdict (``score``, ``report``)
``retry``    score below threshold, regenerating with feedback
``success``  terminal, carries ``code`` and ``audit``
``failed``   terminal, carries the best-scoring ``code`` and ``audit``
``error``    an attempt raised; re-raised after the final attempt

The sequence is single-pass. Call again to restart from the original prompt.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Optional

from .auditor import CodeService
from .config import DEFAULT_AUDIT_THRESHOLD
from .errors import ExtractionFailedError
from .extraction import (
    AuditResult,
    CodeExtractor,
    SolidityExtractor,
    create_feedback_prompt,
    extract_issues,
)

logger = logging.getLogger(__name__)

JsonDict = Dict[str, Any]


@dataclass
class AuditIteration:
    attempt: int
    code: str
    score: int
    issues: List[str] = field(default_factory=list)
    fixes_applied: List[str] = field(default_factory=list)
    passed: bool = False

    def to_dict(self) -> JsonDict:
        return {
            "attempt": self.attempt,
            "code": self.code,
            "score": self.score,
            "issues": list(self.issues),
            "fixesApplied": list(self.fixes_applied),
            "passed": self.passed,
        }


class AuditLoop:
    def __init__(
        self,
        service: CodeService,
        threshold: int = DEFAULT_AUDIT_THRESHOLD,
        extractor: Optional[CodeExtractor] = None,
    ) -> None:
        self.service = service
        self.threshold = threshold
        self.extractor: CodeExtractor = extractor or SolidityExtractor()

    async def generate_with_audit(self, prompt: str, max_retries: int = 3) -> AsyncIterator[JsonDict]:
        if max_retries < 1:
            raise ValueError("max_retries must be at least 1")

        current_prompt = prompt
        fixes: List[str] = []
        iterations: List[AuditIteration] = []
        best: Optional[tuple[AuditIteration, AuditResult]] = None

        for attempt in range(1, max_retries + 1):
            try:
                yield {
                    "type": "attempt",
                    "attempt": attempt,
                    "maxRetries": max_retries,
                    "message": f"Generation attempt {attempt}/{max_retries}",
                }
                yield {"type": "status", "message": "Generating contract..."}

                raw: List[str] = []
                async for chunk in self.service.generate(current_prompt):
                    raw.append(chunk)
                    yield {"type": "code_chunk", "data": chunk}

                output = "".join(raw)
                code = self.extractor.extract(output)
                if not code:
                    raise ExtractionFailedError(
                        "Could not extract Solidity code from response", preview=output[:200]
                    )
                yield {
                    "type": "code_complete",
                    "code": code,
                    "message": "Contract generated successfully",
                }

                yield {"type": "status", "message": "Auditing contract..."}
                audit = await self.service.audit(code)
                yield {
                    "type": "audit_complete",
                    "score": audit.score,
                    "report": audit.report,
                    "scoreSource": audit.score_source,
                    "message": f"Audit score: {audit.score}%",
                }

                passed = audit.score >= self.threshold
                iteration = AuditIteration(
                    attempt=attempt,
                    code=code,
                    score=audit.score,
                    issues=[] if passed else extract_issues(audit.report),
                    fixes_applied=list(fixes),
                    passed=passed,
                )
                iterations.append(iteration)
                if best is None or audit.score > best[1].score:
                    best = (iteration, audit)

                if passed:
                    logger.info("audit passed attempt=%s score=%s", attempt, audit.score)
                    yield {
                        "type": "success",
                        "code": code,
                        "audit": audit.to_dict(),
                        "iterations": [i.to_dict() for i in iterations],
                        "message": f"Contract passed audit with score {audit.score}%",
                    }
                    return

                if attempt < max_retries:
                    yield {
                        "type": "retry",
                        "attempt": attempt,
                        "score": audit.score,
                        "issues": list(iteration.issues),
                        "message": (
                            f"Score {audit.score}% below threshold {self.threshold}%. Regenerating..."
                        ),
                    }
                    fixes = list(iteration.issues)
                    current_prompt = create_feedback_prompt(prompt, iteration.issues)
                else:
                    best_iteration, best_audit = best
                    logger.warning(
                        "audit loop exhausted after %s attempts best_score=%s",
                        max_retries,
                        best_audit.score,
                    )
                    yield {
                        "type": "failed",
                        "code": best_iteration.code,
                        "audit": best_audit.to_dict(),
                        "iterations": [i.to_dict() for i in iterations],
                        "message": (
                            f"Could not generate safe contract after {max_retries} attempts. "
                            f"Best score: {best_audit.score}%"
                        ),
                    }
            except Exception as exc:
                logger.error("audit loop attempt=%s failed: %s", attempt, exc)
                yield {
                    "type": "error",
                    "attempt": attempt,
                    "errorType": type(exc).__name__,
                    "message": str(exc),
                }
                if attempt >= max_retries:
                    raise

    async def generate_direct(self, prompt: str) -> AsyncIterator[str]:
        async for chunk in self.service.generate(prompt):
            yield chunk

    async def audit_only(self, code: str) -> AuditResult:
        return await self.service.audit(code)
