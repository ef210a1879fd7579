"""
API: Cola de trabajos
Encolado de correos, entrega al worker, ack y reencolado
"""
from flask import Blueprint, current_app, request, jsonify

from ..extensions import get_services
from ..services.job_queue import ORDER_CREATED, RECEIPT, NotificationJob

bp = Blueprint("jobs", __name__)


def _enqueue(job_type, message):
    job = NotificationJob.build(job_type, request.get_json(silent=True) or {})
    get_services().queue.enqueue(job)
    response = jsonify({"message": message, "job_id": job.job_id})
    response.status_code = 202
    response.headers["Location"] = f"/api/jobs/{job.job_id}"
    return response


@bp.route("/email/order-created", methods=["POST"])
def enqueue_order_created():
    return _enqueue(ORDER_CREATED, "Trabajo de confirmación encolado")


@bp.route("/email/receipt", methods=["POST"])
def enqueue_receipt():
    return _enqueue(RECEIPT, "Trabajo de recibo encolado")


@bp.route("/next", methods=["GET"])
def next_job():
    """Siguiente trabajo o 204; ?wait=N espera hasta N segundos (long-poll)"""
    try:
        wait = float(request.args.get("wait", 0))
    except ValueError:
        wait = 0
    wait = min(max(wait, 0), current_app.config.get("JOB_LONG_POLL_MAX", 20))

    job = get_services().queue.next(wait=wait)
    if job is None:
        return "", 204
    return jsonify(job.to_dict())


@bp.route("/requeue", methods=["POST"])
def requeue_job():
    job = NotificationJob.from_dict(request.get_json(silent=True))
    get_services().queue.requeue(job)
    return jsonify({"message": "Trabajo reencolado", "job_id": job.job_id}), 202


@bp.route("/<job_id>/ack", methods=["POST"])
def ack_job(job_id):
    acknowledged = get_services().queue.ack(job_id)
    return jsonify({"message": "Trabajo confirmado", "job_id": job_id, "acknowledged": acknowledged})
