"""Stateless policy rules evaluated against an intent and the ledger."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, List, Optional

from .config import PolicyConfig
from .constants import DAY, HOUR, MINUTE
from .intents import Intent, IntentType
from .ledger import PolicyLedger

logger = logging.getLogger(__name__)

REPLAY_VIOLATION = "Nonce already used (replay attack prevented)"


@dataclass
class PolicyResult:
    ok: bool
    violations: List[str] = field(default_factory=list)

    @property
    def replayed(self) -> bool:
        return REPLAY_VIOLATION in self.violations


def _audit_score(value: Any) -> Optional[Decimal]:
    if value is None or isinstance(value, bool):
        return None
    try:
        score = Decimal(str(value))
    except InvalidOperation:
        return None
    # NaN cannot be compared and Infinity would clear any threshold.
    return score if score.is_finite() else None


def validate(
    intent: Intent,
    user_address: Optional[str],
    ledger: PolicyLedger,
    policy: PolicyConfig,
    *,
    now: Optional[float] = None,
    estimated_cost: Optional[Decimal] = None,
) -> PolicyResult:
    """Evaluate every rule and collect all violations.

    Rate and spend windows only apply when ``user_address`` is known.
    """

    now = ledger.now() if now is None else now
    violations: List[str] = []

    if intent.deadline < now:
        violations.append("Intent deadline expired")

    if ledger.has_nonce(intent.nonce):
        violations.append(REPLAY_VIOLATION)

    if intent.type not in policy.allowed_intent_types:
        violations.append(f'Intent type "{intent.type}" is not allowed')

    if user_address:
        rate_windows = (
            (MINUTE, policy.max_tx_per_minute, "minute"),
            (HOUR, policy.max_tx_per_hour, "hour"),
            (DAY, policy.max_tx_per_day, "day"),
        )
        for window, cap, label in rate_windows:
            if ledger.count_within(user_address, window, now) >= cap:
                violations.append(f"Rate limit exceeded: max {cap} tx/{label}")

        spend_windows = (
            (HOUR, policy.max_spend_per_hour, "hour"),
            (DAY, policy.max_spend_per_day, "day"),
        )
        for window, cap, label in spend_windows:
            if ledger.spent_within(user_address, window, now) >= cap:
                violations.append(f"Spend limit exceeded: max {cap} BNB/{label}")

    if estimated_cost is not None and estimated_cost > policy.max_spend_per_tx:
        violations.append(
            f"Estimated cost {estimated_cost} exceeds max {policy.max_spend_per_tx} BNB/tx"
        )

    if intent.type == IntentType.CALL_CONTRACT.value:
        target = intent.data.get("contract")
        if isinstance(target, str) and target:
            target = target.lower()
            if target in {c.lower() for c in policy.denied_contracts}:
                violations.append("Contract is blacklisted")
            allowed = {c.lower() for c in policy.allowed_contracts}
            if allowed and target not in allowed:
                violations.append("Contract is not in allowlist")

    if intent.type == IntentType.DEPLOY_CONTRACT.value and policy.require_audit:
        score = _audit_score(intent.data.get("auditScore"))
        if score is None:
            violations.append("Audit required: deployment has no audit score")
        elif score < policy.min_audit_score:
            violations.append(
                f"Audit score {intent.data.get('auditScore')} is below minimum {policy.min_audit_score}"
            )

    if violations:
        logger.info(
            "policy rejected nonce=%s type=%s user=%s violations=%s",
            intent.nonce,
            intent.type,
            user_address or "unknown",
            violations,
        )
    return PolicyResult(ok=not violations, violations=violations)
