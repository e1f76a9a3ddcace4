import dataclasses
import datetime
import enum
import json
import typing as t


class TrainingStopReason(enum.Enum):
    EPOCHS_COMPLETED = "epochs_completed"
    EARLY_STOPPING = "early_stopping"
    TRAINING_CANCELED = "training_canceled"
    NUMERIC_OVERFLOW = "numeric_overflow"


@dataclasses.dataclass(frozen=True)
class DatasetEvaluationResult:
    cost: float
    accuracy: float

    def to_dict(self) -> t.Dict[str, float]:
        return {"cost": float(self.cost), "accuracy": float(self.accuracy)}


@dataclasses.dataclass(frozen=True)
class TrainingProgress:
    """Reported once per completed epoch to the progress callback."""

    epoch: int
    cost: float
    accuracy: float


@dataclasses.dataclass(frozen=True)
class TrainingSessionResult:
    stop_reason: TrainingStopReason
    completed_epochs: int
    training_time: datetime.timedelta
    validation_reports: t.Tuple[DatasetEvaluationResult, ...] = tuple()
    test_reports: t.Tuple[DatasetEvaluationResult, ...] = tuple()

    def __post_init__(self):
        # Freeze the report sequences along with the record itself.
        object.__setattr__(self, "validation_reports", tuple(self.validation_reports))
        object.__setattr__(self, "test_reports", tuple(self.test_reports))

    def to_dict(self) -> t.Dict[str, t.Any]:
        return {
            "stop_reason": self.stop_reason.name,
            "completed_epochs": int(self.completed_epochs),
            "training_time": str(self.training_time),
            "training_seconds": self.training_time.total_seconds(),
            "validation_reports": [rep.to_dict() for rep in self.validation_reports],
            "test_reports": [rep.to_dict() for rep in self.test_reports],
        }

    def to_json(self, indent: t.Optional[int] = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent)
