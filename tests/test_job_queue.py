import threading
import time
from unittest.mock import Mock

import pytest
import requests

from app.services.errors import ServiceUnavailable, ValidationError
from app.services.job_queue import (
    ORDER_CREATED,
    RECEIPT,
    JobClient,
    LocalJobProducer,
    NotificationJob,
    NotificationQueue,
    order_created_payload,
    receipt_payload,
)

ORDER = {
    "id": 7,
    "user_email": "ana@example.com",
    "service_type": "Pickup",
    "scheduled_at": "2026-06-01T09:30:00",
    "address": "123 Main St, Springfield, IL 62704",
}


def _job(order_id=7, job_type=ORDER_CREATED):
    return NotificationJob.build(job_type, {
        "order_id": order_id,
        "to_email": "ana@example.com",
        "service_type": "Pickup",
    })


def test_build_validates_required_fields():
    with pytest.raises(ValidationError):
        NotificationJob.build(ORDER_CREATED, {"order_id": 7, "to_email": "ana@example.com"})
    with pytest.raises(ValidationError):
        NotificationJob.build(RECEIPT, {"order_id": 0, "to_email": "ana@example.com"})

    job = NotificationJob.build(RECEIPT, {"order_id": "7", "to_email": "ana@example.com", "amount": "40"})
    assert job.order_id == 7
    assert job.amount == 40.0
    assert job.job_id


def test_from_dict_keeps_job_identity():
    job = _job()

    copy = NotificationJob.from_dict({**job.to_dict(), "unknown": "ignored"})

    assert copy == job


def test_from_dict_rejects_incomplete_job():
    with pytest.raises(ValidationError):
        NotificationJob.from_dict({"job_type": ORDER_CREATED, "to_email": "ana@example.com"})
    with pytest.raises(ValidationError):
        NotificationJob.from_dict(None)


def test_queue_is_fifo():
    queue = NotificationQueue()
    first, second = queue.enqueue(_job(1)), queue.enqueue(_job(2))

    assert queue.next() == first
    assert queue.next() == second
    assert queue.next() is None


def test_ack_removes_in_flight_job():
    queue = NotificationQueue()
    job = queue.enqueue(_job())
    queue.next()

    assert queue.stats() == {"depth": 0, "in_flight": 1}
    assert queue.ack(job.job_id) is True
    assert queue.ack(job.job_id) is False
    assert queue.stats() == {"depth": 0, "in_flight": 0}


def test_requeue_appends_unmodified_copy_to_tail():
    queue = NotificationQueue()
    failed = queue.enqueue(_job(1))
    other = queue.enqueue(_job(2))
    queue.next()

    queue.requeue(failed)
    queue.requeue(failed)

    assert queue.depth() == 2
    assert queue.next() == other
    assert queue.next() == failed


def test_expired_in_flight_job_is_reclaimed():
    now = [0.0]
    queue = NotificationQueue(visibility_timeout=10, clock=lambda: now[0])
    job = queue.enqueue(_job())
    queue.next()

    now[0] = 5.0
    assert queue.next() is None

    now[0] = 11.0
    assert queue.next() == job
    assert queue.in_flight_count() == 1


def test_long_poll_times_out_when_empty():
    queue = NotificationQueue()

    started = time.monotonic()
    assert queue.next(wait=0.05) is None
    assert time.monotonic() - started >= 0.05


def test_long_poll_wakes_up_on_enqueue():
    queue = NotificationQueue()
    job = _job()
    timer = threading.Timer(0.05, queue.enqueue, args=(job,))
    timer.start()

    try:
        assert queue.next(wait=5) == job
    finally:
        timer.cancel()


def test_payloads_from_order():
    payload = order_created_payload(ORDER)
    assert payload["scheduled_at"] == "Monday, June 01, 2026 09:30 AM"
    assert payload["to_email"] == "ana@example.com"

    receipt = receipt_payload(ORDER, {"total": 40.0}, {"amount": 39.0, "transaction_id": "pi_1"})
    assert receipt["amount"] == 40.0
    assert receipt["transaction_id"] == "pi_1"
    assert receipt_payload(ORDER, None, {"amount": 39.0})["amount"] == 39.0


def test_local_producer_enqueues_jobs():
    queue = NotificationQueue()
    producer = LocalJobProducer(queue)

    producer.enqueue_order_created(ORDER)
    producer.enqueue_receipt(ORDER, {"total": 40.0})

    assert [queue.next().job_type, queue.next().job_type] == [ORDER_CREATED, RECEIPT]


def _response(status_code, payload=None):
    response = Mock(status_code=status_code, ok=status_code < 400)
    response.json.return_value = payload
    if status_code >= 400:
        response.raise_for_status.side_effect = requests.HTTPError(str(status_code))
    return response


def test_job_client_enqueue_never_raises():
    session = Mock()
    session.post.side_effect = requests.ConnectionError("down")
    client = JobClient("http://queue.test/", session=session)

    assert client.enqueue_order_created(ORDER) is None

    session.post.side_effect = None
    session.post.return_value = _response(202, {"job_id": "abc"})
    assert client.enqueue_receipt(ORDER, {"total": 40.0}) == "abc"
    assert session.post.call_args.args[0] == "http://queue.test/api/jobs/email/receipt"


def test_job_client_enqueue_ignores_non_json_response():
    response = _response(202)
    response.json.side_effect = requests.JSONDecodeError("Expecting value", "<html>", 0)
    session = Mock()
    session.post.return_value = response
    client = JobClient("http://queue.test", session=session)

    assert client.enqueue_order_created(ORDER) is None


def test_job_client_next_job_long_polls():
    job = _job()
    session = Mock()
    session.request.return_value = _response(200, job.to_dict())
    client = JobClient("http://queue.test", timeout=3, session=session)

    assert client.next_job(wait=10) == job
    kwargs = session.request.call_args.kwargs
    assert kwargs["timeout"] == 13
    assert kwargs["params"] == {"wait": 10}

    session.request.return_value = _response(204)
    assert client.next_job() is None


def test_job_client_reports_unavailable_queue():
    session = Mock()
    session.request.side_effect = requests.Timeout("slow")
    client = JobClient("http://queue.test", session=session)

    with pytest.raises(ServiceUnavailable):
        client.next_job()

    session.request.side_effect = None
    session.request.return_value = _response(502)
    with pytest.raises(ServiceUnavailable):
        client.ack("abc")
