from enum import Enum
from typing import Dict, List, Set, Optional
from dataclasses import dataclass
from datetime import datetime, timezone


class AnalysisStage(str, Enum):
    """Stages of a single analysis run."""
    PENDING = "PENDING"
    FETCHING_CANDLES = "FETCHING_CANDLES"
    COMPUTING_INDICATORS = "COMPUTING_INDICATORS"
    BUILDING_PROMPT = "BUILDING_PROMPT"
    AWAITING_COMPLETION = "AWAITING_COMPLETION"
    EXTRACTING_RESPONSE = "EXTRACTING_RESPONSE"
    DONE = "DONE"
    FAILED = "FAILED"


# The pipeline order; every working stage may also fail
PIPELINE: List[AnalysisStage] = [
    AnalysisStage.PENDING,
    AnalysisStage.FETCHING_CANDLES,
    AnalysisStage.COMPUTING_INDICATORS,
    AnalysisStage.BUILDING_PROMPT,
    AnalysisStage.AWAITING_COMPLETION,
    AnalysisStage.EXTRACTING_RESPONSE,
    AnalysisStage.DONE,
]


class StageTransition:
    """Valid transitions: strictly forward, one stage at a time, or to FAILED."""

    VALID_TRANSITIONS: Dict[AnalysisStage, Set[AnalysisStage]] = {
        **{
            stage: {next_stage, AnalysisStage.FAILED}
            for stage, next_stage in zip(PIPELINE, PIPELINE[1:])
        },
        AnalysisStage.DONE: set(),
        AnalysisStage.FAILED: set(),
    }

    @classmethod
    def is_valid_transition(cls, from_stage: AnalysisStage, to_stage: AnalysisStage) -> bool:
        """Check if stage transition is valid."""
        return to_stage in cls.VALID_TRANSITIONS.get(from_stage, set())

    @classmethod
    def get_valid_next_stages(cls, current_stage: AnalysisStage) -> Set[AnalysisStage]:
        return cls.VALID_TRANSITIONS.get(current_stage, set())


@dataclass
class StageTransitionEvent:
    """Event representing a stage transition."""
    from_stage: AnalysisStage
    to_stage: AnalysisStage
    timestamp: datetime
    reason: Optional[str] = None


class InvalidTransitionError(RuntimeError):
    pass


class AnalysisStateMachine:
    """
    Tracks one analysis run through its stages. Runs never go backwards and
    DONE / FAILED are final; a new request gets a new machine.
    """

    def __init__(self):
        self.current_stage = AnalysisStage.PENDING
        self.transition_history: List[StageTransitionEvent] = []
        self.created_at = datetime.now(timezone.utc)

    def transition_to(self, new_stage: AnalysisStage, reason: str = None) -> None:
        """Move to ``new_stage`` or raise ``InvalidTransitionError``."""
        if not StageTransition.is_valid_transition(self.current_stage, new_stage):
            raise InvalidTransitionError(
                f"Cannot move from {self.current_stage.value} to {new_stage.value}"
            )

        self.transition_history.append(StageTransitionEvent(
            from_stage=self.current_stage,
            to_stage=new_stage,
            timestamp=datetime.now(timezone.utc),
            reason=reason,
        ))
        self.current_stage = new_stage

    def fail(self, reason: str) -> None:
        self.transition_to(AnalysisStage.FAILED, reason)

    def can_transition_to(self, stage: AnalysisStage) -> bool:
        return StageTransition.is_valid_transition(self.current_stage, stage)

    def is_terminal_state(self) -> bool:
        return self.current_stage in (AnalysisStage.DONE, AnalysisStage.FAILED)

    def get_last_transition(self) -> Optional[StageTransitionEvent]:
        """Get the most recent stage transition."""
        return self.transition_history[-1] if self.transition_history else None

    def elapsed_sec(self) -> float:
        return (datetime.now(timezone.utc) - self.created_at).total_seconds()

    def to_dict(self) -> Dict:
        """Export state machine to dictionary."""
        return {
            "current_stage": self.current_stage.value,
            "created_at": self.created_at.isoformat(),
            "elapsed_sec": round(self.elapsed_sec(), 3),
            "stages": [event.to_stage.value for event in self.transition_history],
            "is_terminal": self.is_terminal_state(),
        }
