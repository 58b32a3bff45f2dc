from chimera_facilitator.extraction import (
    SolidityExtractor,
    create_feedback_prompt,
    extract_issues,
    score_from_report,
)

CONTRACT = """// SPDX-License-Identifier: MIT
pragma solidity ^0.8.20;

contract Counter {
    uint256 public count;
}"""


def test_extracts_fenced_solidity_block():
    response = f"Here you go:\n```solidity\n{CONTRACT}\n```\nEnjoy."
    assert SolidityExtractor().extract(response) == CONTRACT


def test_skips_fenced_blocks_without_contract():
    response = f"```bash\nforge build\n```\n\n```\n{CONTRACT}\n```"
    assert SolidityExtractor().extract(response) == CONTRACT


def test_falls_back_to_spdx_anchor_and_trims_trailing_text():
    response = f"Sure.\n{CONTRACT}\nThis contract counts things."
    assert SolidityExtractor().extract(response) == CONTRACT


def test_falls_back_to_pragma_anchor():
    body = CONTRACT.split("\n", 1)[1]
    assert SolidityExtractor().extract(f"text\n{body}") == body


def test_returns_none_without_code():
    assert SolidityExtractor().extract("I cannot help with that.") is None
    assert SolidityExtractor().extract("") is None


def test_extract_issues_matches_labelled_lines():
    report = "Critical: reentrancy in withdraw\nWarning: floating pragma\nInfo: fine"
    assert extract_issues(report) == ["reentrancy in withdraw", "floating pragma"]


def test_extract_issues_falls_back_to_sentences():
    report = "The owner can drain funds. Ok. Access control is missing on mint"
    assert extract_issues(report) == [
        "The owner can drain funds",
        "Access control is missing on mint",
    ]


def test_extract_issues_is_capped():
    report = "\n".join(f"issue: problem {i}" for i in range(10))
    assert len(extract_issues(report)) == 5


def test_feedback_prompt_lists_issues():
    prompt = create_feedback_prompt("Build a token", ["reentrancy", "overflow"])
    assert prompt.startswith("Build a token\n\nIMPORTANT:")
    assert "1. reentrancy\n2. overflow" in prompt


def test_explicit_score_wins():
    result = score_from_report("Overall Score: 92\nCritical issue found")
    assert result.score == 92
    assert result.score_source == "explicit"
    assert result.severity_counts["critical"] == 1


def test_explicit_score_is_clamped():
    assert score_from_report("score: 250").score == 100


def test_fallback_score_from_severities():
    report = "Critical bug. High severity bug. Medium severity bug. Medium severity bug."
    result = score_from_report(report)
    assert result.score == 100 - 30 - 15 - 10
    assert result.score_source == "fallback"


def test_fallback_score_floors_at_zero():
    assert score_from_report("critical " * 5).score == 0
