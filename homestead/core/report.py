"""Run report: the ordered record of what a convergence run did."""
from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple


class OutcomeStatus:
    """Status values recorded for a target."""

    SKIPPED_ALREADY_SATISFIED = "skipped_already_satisfied"
    SKIPPED_NOT_APPLICABLE = "skipped_not_applicable"
    APPLIED = "applied"
    FAILED = "failed"
    WOULD_APPLY = "would_apply"  # dry-run only

    ALL = (
        SKIPPED_ALREADY_SATISFIED,
        SKIPPED_NOT_APPLICABLE,
        APPLIED,
        FAILED,
        WOULD_APPLY,
    )


class Phase:
    IDENTITY = "identity"
    SSH_CONFIG = "ssh-config"
    PACKAGES = "packages"
    SERVICES = "services"


@dataclass(frozen=True)
class ActionOutcome:
    """Result of one action attempt. Immutable once recorded."""

    target: str
    status: str
    detail: str = ""
    required: bool = False
    phase: str = Phase.PACKAGES

    def __post_init__(self):
        if self.status not in OutcomeStatus.ALL:
            raise ValueError(f"Unknown outcome status: {self.status}")

    @property
    def is_failure(self) -> bool:
        return self.status == OutcomeStatus.FAILED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "target": self.target,
            "status": self.status,
            "detail": self.detail,
            "required": self.required,
            "phase": self.phase,
        }


@dataclass
class RunReport:
    """Append-only ordered log of per-target outcomes for one run."""

    dry_run: bool = False
    started_at: str = field(default_factory=lambda: datetime.now().isoformat(timespec="seconds"))
    finished_at: Optional[str] = None
    facts: Dict[str, Any] = field(default_factory=dict)
    cancelled: bool = False
    _outcomes: List[ActionOutcome] = field(default_factory=list, repr=False)

    @property
    def outcomes(self) -> Tuple[ActionOutcome, ...]:
        return tuple(self._outcomes)

    def add(self, outcome: ActionOutcome) -> ActionOutcome:
        self._outcomes.append(outcome)
        return outcome

    def finish(self) -> None:
        self.finished_at = datetime.now().isoformat(timespec="seconds")

    def get(self, target: str) -> Optional[ActionOutcome]:
        """Return the last outcome recorded for ``target``."""
        for outcome in reversed(self._outcomes):
            if outcome.target == target:
                return outcome
        return None

    def with_status(self, status: str) -> List[ActionOutcome]:
        return [o for o in self._outcomes if o.status == status]

    def failures(self) -> List[ActionOutcome]:
        return self.with_status(OutcomeStatus.FAILED)

    def has_required_failures(self) -> bool:
        return any(o.is_failure and o.required for o in self._outcomes)

    def summary(self) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for outcome in self._outcomes:
            counts[outcome.status] = counts.get(outcome.status, 0) + 1
        return counts

    def exit_code(self) -> int:
        """0 unless a required action failed; dry runs always succeed."""
        if self.dry_run:
            return 0
        return 1 if self.has_required_failures() else 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "dry_run": self.dry_run,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "cancelled": self.cancelled,
            "facts": self.facts,
            "summary": self.summary(),
            "outcomes": [o.to_dict() for o in self._outcomes],
        }

    def to_json(self, indent: Optional[int] = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent)
