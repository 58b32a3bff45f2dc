"""Error taxonomy shared by the facilitator, audit loop and payment gate."""

from __future__ import annotations

from typing import List, Optional, Sequence


class InvalidSignatureError(ValueError):
    """The intent signature could not be verified. Re-sign and retry."""


class PolicyViolationError(ValueError):
    """One or more policy rules rejected the intent."""

    def __init__(self, violations: Sequence[str]) -> None:
        self.violations: List[str] = list(violations)
        super().__init__(f"Policy violation: {'; '.join(self.violations)}")


class ReplayedNonceError(PolicyViolationError):
    """The intent nonce was already consumed."""


class ExtractionFailedError(ValueError):
    """No source code could be located in the generator output."""

    def __init__(self, message: str, preview: str = "") -> None:
        super().__init__(message)
        self.preview = preview


class AuditServiceError(RuntimeError):
    """The generation or audit service failed upstream."""

    def __init__(self, message: str, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.status = status


class ExecutionFailedError(RuntimeError):
    """On-chain submission or execution failed.

    ``landed`` is ``True`` for a transaction that was mined and reverted, ``False``
    for one that never reached the chain, and ``None`` when it was broadcast but
    its outcome is unknown (no receipt before the timeout).
    """

    def __init__(
        self,
        reason: str,
        *,
        landed: Optional[bool] = False,
        tx_hash: Optional[str] = None,
    ) -> None:
        super().__init__(f"Transaction execution failed: {reason}")
        self.reason = reason
        self.landed = landed
        self.tx_hash = tx_hash


class InsufficientFundsError(RuntimeError):
    """The facilitator account cannot cover the transaction cost."""


class ConfigurationError(RuntimeError):
    """Required configuration is missing or malformed."""
