from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any
from uuid import uuid4


class RunStage(str, Enum):
    INTENT = "intent"
    REVIEW_SEARCH = "review_search"
    QUERY_DERIVATION = "query_derivation"
    PRODUCT_SEARCH = "product_search"
    ENRICHMENT = "enrichment"
    ANSWERING = "answering"
    DONE = "done"
    FAILED = "failed"
    DECLINED = "declined"

    @property
    def rank(self) -> int:
        # Terminal states share the last rank: a run ends in exactly one of them.
        return min(_STAGE_ORDER.index(self), len(_STAGE_ORDER) - 3)

    @property
    def is_terminal(self) -> bool:
        return self in (RunStage.DONE, RunStage.FAILED, RunStage.DECLINED)


_STAGE_ORDER = list(RunStage)


class RunOutcome(str, Enum):
    ANSWERED = "answered"
    DECLINED = "declined"
    FAILED = "failed"


TERMINAL_STAGE_FOR_OUTCOME = {
    RunOutcome.ANSWERED: RunStage.DONE,
    RunOutcome.DECLINED: RunStage.DECLINED,
    RunOutcome.FAILED: RunStage.FAILED,
}


class RunStateError(RuntimeError):
    """Raised when a run is moved backwards or terminated twice."""


@dataclass
class Run:
    """One execution of the pipeline for one inbound message."""

    chat_id: str
    message_text: str
    id: str = field(default_factory=lambda: str(uuid4()))
    current_stage: RunStage = RunStage.INTENT
    outcome: RunOutcome | None = None
    message_id: str | None = None  # placeholder assistant message

    @property
    def is_terminal(self) -> bool:
        return self.outcome is not None

    def advance(self, stage: RunStage) -> None:
        if self.is_terminal:
            raise RunStateError(f"Run {self.id} already finished with {self.outcome.value}")
        if stage.is_terminal:
            raise RunStateError("Use finish() to move a run into a terminal stage")
        if stage.rank < self.current_stage.rank:
            raise RunStateError(
                f"Run {self.id} cannot move from {self.current_stage.value} back to {stage.value}"
            )
        self.current_stage = stage

    def finish(self, outcome: RunOutcome) -> None:
        if self.is_terminal:
            raise RunStateError(f"Run {self.id} already finished with {self.outcome.value}")
        self.outcome = outcome
        self.current_stage = TERMINAL_STAGE_FOR_OUTCOME[outcome]


@dataclass(frozen=True, slots=True)
class StageResult:
    ok: bool
    output: Any = None

    @classmethod
    def success(cls, output: Any = None) -> "StageResult":
        return cls(ok=True, output=output)

    @classmethod
    def failure(cls) -> "StageResult":
        return cls(ok=False)


@dataclass(frozen=True, slots=True)
class SwallowedFailure:
    stage: str
    kind: str  # enrichment | persistence | executor
    detail: str


@dataclass
class RunDiagnostics:
    swallowed: list[SwallowedFailure] = field(default_factory=list)

    def record(self, stage: RunStage | str, kind: str, detail: str) -> None:
        stage_name = stage.value if isinstance(stage, RunStage) else stage
        self.swallowed.append(SwallowedFailure(stage=stage_name, kind=kind, detail=detail))

    def count(self, kind: str | None = None) -> int:
        if kind is None:
            return len(self.swallowed)
        return sum(1 for item in self.swallowed if item.kind == kind)

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.count(),
            "enrichment": self.count("enrichment"),
            "persistence": self.count("persistence"),
            "executor": self.count("executor"),
        }


@dataclass(frozen=True)
class FinalAnswer:
    run_id: str
    outcome: RunOutcome
    text: str
    message_id: str | None = None
    diagnostics: RunDiagnostics = field(default_factory=RunDiagnostics)
