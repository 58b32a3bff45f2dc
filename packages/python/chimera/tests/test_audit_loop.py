import pytest

from chimera_facilitator.audit_loop import AuditLoop
from chimera_facilitator.errors import AuditServiceError, ExtractionFailedError
from chimera_facilitator.extraction import AuditResult

TERMINAL = {"success", "failed"}


def contract(version: int) -> str:
    return f"pragma solidity ^0.8.20;\ncontract V{version} {{}}"


class ScriptedService:
    """Generates ``contract(n)`` for the n-th call and audits with fixed scores."""

    def __init__(self, scores, outputs=None, audit_error=None):
        self.scores = list(scores)
        self.outputs = outputs
        self.audit_error = audit_error
        self.prompts = []
        self.audited = []

    async def generate(self, prompt):
        self.prompts.append(prompt)
        n = len(self.prompts)
        text = self.outputs[n - 1] if self.outputs else f"```solidity\n{contract(n)}\n```"
        for start in range(0, len(text), 16):
            yield text[start:start + 16]

    async def audit(self, code):
        self.audited.append(code)
        if self.audit_error is not None:
            raise self.audit_error
        score = self.scores[len(self.audited) - 1]
        return AuditResult(score=score, report=f"Score: {score}\nCritical: reentrancy in withdraw")


async def collect(loop, prompt="Build a vault", max_retries=3):
    return [event async for event in loop.generate_with_audit(prompt, max_retries)]


@pytest.mark.asyncio
async def test_passes_on_first_attempt():
    service = ScriptedService([91])
    events = await collect(AuditLoop(service, threshold=80))

    types = [e["type"] for e in events]
    assert types[0] == "attempt"
    assert types[-1] == "success"
    assert "code_chunk" in types
    assert events[-1]["code"] == contract(1)
    assert events[-1]["audit"]["score"] == 91
    assert len(service.prompts) == 1


@pytest.mark.asyncio
async def test_retries_with_feedback_then_passes():
    service = ScriptedService([40, 85])
    events = await collect(AuditLoop(service, threshold=80))

    retries = [e for e in events if e["type"] == "retry"]
    assert len(retries) == 1
    assert retries[0]["issues"] == ["reentrancy in withdraw"]
    assert service.prompts[1].startswith("Build a vault\n\nIMPORTANT:")
    assert "1. reentrancy in withdraw" in service.prompts[1]
    assert events[-1]["type"] == "success"
    assert events[-1]["iterations"][1]["fixesApplied"] == ["reentrancy in withdraw"]


@pytest.mark.asyncio
async def test_failure_returns_best_scoring_attempt():
    service = ScriptedService([30, 70, 50])
    events = await collect(AuditLoop(service, threshold=80))

    assert len(service.prompts) == 3
    assert sum(e["type"] in TERMINAL for e in events) == 1
    final = events[-1]
    assert final["type"] == "failed"
    assert final["code"] == contract(2)
    assert final["audit"]["score"] == 70
    assert len(final["iterations"]) == 3


@pytest.mark.asyncio
async def test_feedback_is_built_from_the_original_prompt():
    service = ScriptedService([10, 10, 10])
    await collect(AuditLoop(service, threshold=80))
    assert all(p.startswith("Build a vault\n\n") for p in service.prompts[1:])
    assert service.prompts[2].count("IMPORTANT:") == 1


@pytest.mark.asyncio
async def test_extraction_failure_is_reported_then_raised():
    service = ScriptedService([], outputs=["no code here"] * 2)

    events = []
    with pytest.raises(ExtractionFailedError):
        async for event in AuditLoop(service).generate_with_audit("x", max_retries=2):
            events.append(event)

    errors = [e for e in events if e["type"] == "error"]
    assert [e["attempt"] for e in errors] == [1, 2]
    assert errors[0]["errorType"] == "ExtractionFailedError"
    assert not any(e["type"] in TERMINAL for e in events)


@pytest.mark.asyncio
async def test_error_then_recovery():
    service = ScriptedService([90], outputs=["nothing", f"```\n{contract(9)}\n```"])
    events = await collect(AuditLoop(service), max_retries=3)

    assert [e["type"] for e in events].count("error") == 1
    assert events[-1]["type"] == "success"
    assert events[-1]["code"] == contract(9)


@pytest.mark.asyncio
async def test_audit_service_error_propagates_after_last_attempt():
    service = ScriptedService([], audit_error=AuditServiceError("upstream down", status=503))
    with pytest.raises(AuditServiceError):
        await collect(AuditLoop(service), max_retries=1)


@pytest.mark.asyncio
async def test_rejects_non_positive_retries():
    with pytest.raises(ValueError):
        await collect(AuditLoop(ScriptedService([])), max_retries=0)


@pytest.mark.asyncio
async def test_audit_only_delegates():
    service = ScriptedService([77])
    result = await AuditLoop(service).audit_only("contract A {}")
    assert result.score == 77
    assert service.audited == ["contract A {}"]
