import dataclasses
import datetime
import json

import pytest

from numnet.results import (
    DatasetEvaluationResult,
    TrainingSessionResult,
    TrainingStopReason,
)


@pytest.fixture
def session_result():
    return TrainingSessionResult(
        stop_reason=TrainingStopReason.EARLY_STOPPING,
        completed_epochs=7,
        training_time=datetime.timedelta(seconds=90.5),
        validation_reports=[DatasetEvaluationResult(0.25, 0.875)],
    )


@pytest.mark.unit
class TestTrainingSessionResult:
    def test_json_uses_the_stop_reason_name(self, session_result):
        payload = json.loads(session_result.to_json())

        assert payload["stop_reason"] == "EARLY_STOPPING"
        assert payload["completed_epochs"] == 7
        assert payload["training_seconds"] == pytest.approx(90.5)
        assert payload["validation_reports"] == [{"cost": 0.25, "accuracy": 0.875}]
        assert payload["test_reports"] == []

    def test_is_immutable(self, session_result):
        assert isinstance(session_result.validation_reports, tuple)

        with pytest.raises(dataclasses.FrozenInstanceError):
            session_result.completed_epochs = 8

        with pytest.raises(dataclasses.FrozenInstanceError):
            session_result.validation_reports[0].cost = 0.0
