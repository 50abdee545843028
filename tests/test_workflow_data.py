import pytest

from app.roadstatus.errors import ValidationError
from app.roadstatus.modules.reports.workflow import WorkflowData, parse_workflow_update


def test_from_document_splits_recognized_and_extra():
    wf = WorkflowData.from_document({"progressPercent": 20, "notes": "n", "contractor": "ABC"})
    assert wf.progress_percent == 20
    assert wf.notes == "n"
    assert wf.estimated_cost_lkr is None
    assert wf.extra == {"contractor": "ABC"}


def test_to_document_omits_unset_keys():
    assert WorkflowData().to_document() is None
    assert WorkflowData(progress_percent=0).to_document() == {"progressPercent": 0}


def test_merge_keeps_untouched_keys():
    wf = WorkflowData.from_document({"progressPercent": 50, "contractor": "ABC"})
    merged = wf.merge({"estimatedCostLkr": 1000})
    assert merged.to_document() == {"progressPercent": 50, "estimatedCostLkr": 1000, "contractor": "ABC"}


def test_merge_none_clears():
    wf = WorkflowData.from_document({"progressPercent": 50, "contractor": "ABC"})
    merged = wf.merge({"progressPercent": None, "contractor": None})
    assert merged.to_document() is None


def test_parse_update_validates_recognized_keys():
    assert parse_workflow_update({"progressPercent": "75", "estimatedCostLkr": 12.5}) == {
        "progressPercent": 75,
        "estimatedCostLkr": 12.5,
    }
    assert parse_workflow_update('{"notes": "ok"}') == {"notes": "ok"}
    assert parse_workflow_update("") == {}


@pytest.mark.parametrize(
    "raw",
    [
        {"progressPercent": 101},
        {"progressPercent": 12.5},
        {"progressPercent": True},
        {"estimatedCostLkr": -1},
        {"estimatedCostLkr": "lots"},
        {"notes": 5},
        {"a.b": 1},
        "[1, 2]",
        "{broken",
        42,
    ],
)
def test_parse_update_rejects_bad_input(raw):
    with pytest.raises(ValidationError):
        parse_workflow_update(raw)
