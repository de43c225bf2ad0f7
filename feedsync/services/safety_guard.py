# feedsync/services/safety_guard.py
"""
Pre-flight check bounding the size of destructive batches.

A bucket whose size exceeds ``max_count`` aborts the whole apply/repair phase.
The same rule is used by the sync run (changed and deleted buckets, checked
separately) and by reconciliation repair (extra-in-remote plus extra-in-store).
"""

import logging
from dataclasses import dataclass, field
from typing import Dict

logger = logging.getLogger(__name__)


@dataclass
class GuardDecision:
    proceed: bool
    threshold: int
    counts: Dict[str, int] = field(default_factory=dict)
    message: str = ""


class SafetyGuard:
    def __init__(self, max_count: int):
        if max_count < 0:
            raise ValueError("max_count must not be negative")
        self.max_count = max_count

    def evaluate(self, **counts: int) -> GuardDecision:
        over = {name: count for name, count in counts.items() if count > self.max_count}
        if over:
            details = ", ".join(f"{name}={count}" for name, count in over.items())
            message = (
                f"Safety threshold exceeded ({details}; maximum {self.max_count}). "
                f"Nothing was applied."
            )
            logger.error(message)
            return GuardDecision(proceed=False, threshold=self.max_count, counts=dict(counts), message=message)

        return GuardDecision(
            proceed=True,
            threshold=self.max_count,
            counts=dict(counts),
            message="Within safety threshold",
        )

    def check_change_set(self, change_set) -> GuardDecision:
        return self.evaluate(
            changed=len(change_set.changed_items),
            deleted=len(change_set.deleted_items),
        )

    def check_discrepancies(self, extra_in_remote: int, extra_in_store: int) -> GuardDecision:
        return self.evaluate(orphans=extra_in_remote + extra_in_store)
