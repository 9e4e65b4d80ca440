import pytest

from errors import FlowStateError
from flows import ScanFlow, load_flow, save_flow

RESULT = {"waste_type": "glass", "quantity": "0.5 kg", "confidence": 0.8, "bin": "recyclables"}


def test_happy_path() -> None:
    flow = ScanFlow()
    assert flow.state == "idle"

    flow.start_verification("/static/uploads/a.jpg")
    assert flow.state == "verifying"
    flow.succeed(RESULT)
    assert flow.begin_submit() == RESULT
    assert flow.state == "submitting"
    flow.finish_submit()
    assert flow.state == "submitted"


def test_submit_requires_success() -> None:
    flow = ScanFlow()
    with pytest.raises(FlowStateError):
        flow.begin_submit()

    flow.start_verification("/static/uploads/a.jpg")
    flow.fail("Classification service failed")
    with pytest.raises(FlowStateError):
        flow.begin_submit()
    assert flow.error == "Classification service failed"


def test_submitted_flow_cannot_be_reused() -> None:
    flow = ScanFlow()
    flow.start_verification("/static/uploads/a.jpg")
    flow.succeed(RESULT)
    flow.begin_submit()
    flow.finish_submit()

    with pytest.raises(FlowStateError):
        flow.begin_submit()


def test_purpose_must_match() -> None:
    flow = ScanFlow()
    flow.start_verification("/static/uploads/a.jpg", purpose="collect")
    flow.succeed(RESULT)

    with pytest.raises(FlowStateError):
        flow.begin_submit("report")
    assert flow.begin_submit("collect") == RESULT


def test_abort_keeps_result() -> None:
    flow = ScanFlow()
    flow.start_verification("/static/uploads/a.jpg")
    flow.succeed(RESULT)
    flow.begin_submit()

    flow.abort_submit()

    assert flow.state == "success"
    assert flow.begin_submit() == RESULT


def test_retry_after_failure_clears_error() -> None:
    flow = ScanFlow()
    flow.start_verification("/static/uploads/a.jpg")
    flow.fail("bad reply")

    flow.start_verification("/static/uploads/b.jpg")

    assert flow.error is None
    assert flow.image_url == "/static/uploads/b.jpg"


def test_session_round_trip() -> None:
    session = {}
    assert load_flow(session).state == "idle"

    flow = ScanFlow()
    flow.start_verification("/static/uploads/a.jpg")
    flow.succeed(RESULT)
    save_flow(session, flow)

    restored = load_flow(session)
    assert restored.state == "success"
    assert restored.result == RESULT
