import threading
import warnings

import pytest

from prodrec.errors import InvalidInput, MalformedResponse, NetworkError, ServiceError, TrainingTimeout
from prodrec.models.recommender import TrainingParameters
from prodrec.services.dispatcher import RequestDispatcher
from prodrec.services.training import TrainingOrchestrator, TrainingState, training_payload

from conftest import ADMIN_KEY, MODELS_URL, FakeSession, descriptor


def _service(statuses, initial="Created"):
    """Handler answering POST with `initial` and each GET with the next status."""
    remaining = list(statuses)

    def handler(method, path, params, body):
        if method == "POST":
            return descriptor(status=initial)
        status = remaining.pop(0) if len(remaining) > 1 else remaining[0]
        return descriptor(status=status)

    return handler


def _orchestrator(handler, clock, **kwargs):
    session = FakeSession(handler)
    models = RequestDispatcher(MODELS_URL, session=session)
    return TrainingOrchestrator(models, ADMIN_KEY, clock=clock, **kwargs), session


def test_payload_drops_unset_parameters():
    payload = training_payload({
        "description": "m",
        "usage_relative_path": "usage/",
        "enableUserAffinity": None,
        "decayPeriodInDays": 30,
        "customFlag": None,
    })
    assert payload == {"description": "m", "usageRelativePath": "usage/", "decayPeriodInDays": 30}


def test_payload_from_parameter_model():
    params = TrainingParameters(description="m", enable_backfilling=False)
    assert training_payload(params) == {"description": "m", "enableBackfilling": False}


@pytest.mark.parametrize("params", [None, {}, {"description": None}])
def test_payload_requires_parameters(params):
    with pytest.raises(InvalidInput):
        training_payload(params)


def test_waits_until_completed(clock):
    orchestrator, session = _orchestrator(_service(["Training", "Training", "Completed"]), clock)

    with warnings.catch_warnings():
        warnings.simplefilter("error", TrainingTimeout)
        outcome = orchestrator.train({"description": "demo"}, wait=True)

    assert outcome.state == TrainingState.COMPLETED
    assert outcome.snapshot.status == "Completed"
    assert outcome.polls == 3
    assert len(session.calls_to("GET", "/api/models/m1")) == 3
    assert clock.waits == [5.0, 5.0, 5.0]

    post = session.calls_to("POST")[0]
    assert post["url"] == MODELS_URL
    assert post["json"] == {"description": "demo"}
    assert all(c["headers"]["x-api-key"] == ADMIN_KEY for c in session.calls)


def test_no_wait_returns_submission_state(clock):
    orchestrator, session = _orchestrator(_service(["Completed"]), clock)

    outcome = orchestrator.train({"description": "demo"}, wait=False)

    assert outcome.state == TrainingState.SUBMITTED
    assert outcome.snapshot.id == "m1"
    assert outcome.snapshot.status == "Created"
    assert session.calls_to("GET") == []


def test_poll_budget_exhaustion_warns_instead_of_raising(clock):
    orchestrator, session = _orchestrator(_service(["Training"]), clock)

    with pytest.warns(TrainingTimeout):
        outcome = orchestrator.train({"description": "demo"})

    assert outcome.timed_out
    assert outcome.polls == 1000
    assert outcome.snapshot.status == "Training"
    assert len(session.calls_to("GET")) == 1000


def test_failed_status_stops_polling_without_error(clock):
    orchestrator, session = _orchestrator(_service(["Training", "Failed", "Completed"]), clock)

    with warnings.catch_warnings():
        warnings.simplefilter("error", TrainingTimeout)
        outcome = orchestrator.train({"description": "demo"})

    assert outcome.state == TrainingState.FAILED
    assert outcome.snapshot.status == "Failed"
    assert outcome.polls == 2


def test_already_completed_submission_needs_no_polling(clock):
    orchestrator, session = _orchestrator(_service(["Completed"], initial="Completed"), clock)

    outcome = orchestrator.train({"description": "demo"})

    assert outcome.state == TrainingState.COMPLETED
    assert outcome.polls == 0
    assert clock.waits == []


def test_cancel_token_stops_the_loop(clock):
    cancel = threading.Event()
    statuses = iter(["Training", "Training", "Training", "Completed"])

    def handler(method, path, params, body):
        if method == "POST":
            return descriptor(status="Created")
        status = next(statuses)
        if status == "Training" and len(clock.waits) == 2:
            cancel.set()
        return descriptor(status=status)

    orchestrator, session = _orchestrator(handler, clock)
    outcome = orchestrator.train({"description": "demo"}, cancel=cancel)

    assert outcome.state == TrainingState.CANCELLED
    assert outcome.polls == 2
    assert outcome.snapshot.status == "Training"


def test_deadline_bounds_wall_clock_time(clock):
    orchestrator, session = _orchestrator(_service(["Training"]), clock)

    with pytest.warns(TrainingTimeout):
        outcome = orchestrator.train({"description": "demo"}, deadline=12)

    assert outcome.timed_out
    assert clock.waits == [5.0, 5.0, 2.0]
    assert outcome.polls == 3


def test_custom_budget_and_interval(clock):
    orchestrator, session = _orchestrator(_service(["Training"]), clock, poll_interval=0.5, max_polls=4)

    with pytest.warns(TrainingTimeout):
        outcome = orchestrator.train({"description": "demo"})

    assert outcome.polls == 4
    assert clock.waits == [0.5] * 4


def test_transient_network_errors_on_status_fetch_are_retried(clock, monkeypatch):
    monkeypatch.setattr("time.sleep", lambda seconds: None)
    attempts = {"get": 0}

    def handler(method, path, params, body):
        if method == "POST":
            return descriptor(status="Created")
        attempts["get"] += 1
        if attempts["get"] == 1:
            raise NetworkError("connection reset")
        return descriptor(status="Completed")

    orchestrator, session = _orchestrator(handler, clock, status_retries=3)
    outcome = orchestrator.train({"description": "demo"})

    assert outcome.state == TrainingState.COMPLETED
    assert attempts["get"] == 2
    assert outcome.polls == 1


def test_network_errors_beyond_retry_budget_propagate(clock, monkeypatch):
    monkeypatch.setattr("time.sleep", lambda seconds: None)

    def handler(method, path, params, body):
        if method == "POST":
            return descriptor(status="Created")
        raise NetworkError("down")

    orchestrator, session = _orchestrator(handler, clock, status_retries=2)
    with pytest.raises(NetworkError):
        orchestrator.train({"description": "demo"})
    assert len(session.calls_to("GET")) == 2


def test_service_error_while_polling_is_not_retried(clock):
    def handler(method, path, params, body):
        if method == "POST":
            return descriptor(status="Created")
        return 404, {"message": "gone"}

    orchestrator, session = _orchestrator(handler, clock)
    with pytest.raises(ServiceError):
        orchestrator.train({"description": "demo"})
    assert len(session.calls_to("GET")) == 1


def test_submission_without_id_is_an_error(clock):
    orchestrator, _ = _orchestrator(lambda *a: {"modelStatus": "Created"}, clock)
    with pytest.raises(Exception, match="no model id"):
        orchestrator.train({"description": "demo"}, wait=False)


@pytest.mark.parametrize("body", [["not", "a", "descriptor"], {"id": "m1", "parameters": "oops"}])
def test_malformed_descriptor_raises_package_error(clock, body):
    orchestrator, _ = _orchestrator(lambda *a: body, clock)
    with pytest.raises(MalformedResponse):
        orchestrator.fetch_status("m1")
    with pytest.raises(MalformedResponse):
        orchestrator.train({"description": "demo"})
