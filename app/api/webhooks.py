"""
API: Webhooks de Stripe
La firma se verifica con STRIPE_WEBHOOK_SECRET antes de confiar en el evento
"""
import json
import logging

import stripe
from flask import Blueprint, current_app, request, jsonify

from ..extensions import get_services

logger = logging.getLogger(__name__)

bp = Blueprint("webhooks", __name__)


@bp.route("/stripe", methods=["POST"])
def stripe_webhook():
    secret = current_app.config.get("STRIPE_WEBHOOK_SECRET")
    if not secret:
        return jsonify({"error": "Webhook de Stripe no configurado", "code": "not_configured"}), 503

    payload = request.get_data(as_text=True)
    signature = request.headers.get("Stripe-Signature", "")
    try:
        stripe.WebhookSignature.verify_header(
            payload, signature, secret, tolerance=stripe.Webhook.DEFAULT_TOLERANCE
        )
        event = json.loads(payload)
    except stripe.SignatureVerificationError as e:
        logger.warning(f"⚠️ Firma de webhook inválida: {e}")
        return jsonify({"error": "Firma inválida", "code": "invalid_signature"}), 400
    except ValueError as e:
        logger.warning(f"⚠️ Payload de webhook inválido: {e}")
        return jsonify({"error": "Payload inválido", "code": "validation"}), 400

    if not isinstance(event, dict):
        return jsonify({"error": "Payload inválido", "code": "validation"}), 400

    order = get_services().payments.handle_webhook_event(event)
    return jsonify({"received": True, "order_id": order.id if order else None})
