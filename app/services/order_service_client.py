"""
Servicio: Cliente HTTP del servicio de pedidos
Habla el contrato /api/orders y /api/admin/orders con requests y un
timeout acotado.

- Caída de red, timeout o 5xx -> ServiceUnavailable (el gateway decide si
  usa el almacén local).
- Cualquier otro error se reconstruye con su código original, así un
  error de negocio remoto nunca se confunde con indisponibilidad.
"""
import logging

import requests

from .errors import ServiceUnavailable, error_from_payload

logger = logging.getLogger(__name__)


class OrderServiceClient:

    def __init__(self, base_url, timeout=8, session=None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    def _request(self, method, path, allow_missing=False, **kwargs):
        url = f"{self.base_url}/api{path}"
        try:
            response = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.Timeout:
            raise ServiceUnavailable(f"Timeout ({self.timeout}s) llamando {method} {path}")
        except requests.RequestException as e:
            raise ServiceUnavailable(f"Error de red llamando {method} {path}: {e}")

        if response.status_code >= 500:
            raise ServiceUnavailable(
                f"Servicio de pedidos respondió {response.status_code} en {method} {path}"
            )
        if response.status_code == 404 and allow_missing:
            return None
        if not response.ok:
            raise error_from_payload(_json_or_none(response), response.status_code)
        if response.status_code == 204 or not response.content:
            return None

        payload = _json_or_none(response)
        if payload is None:
            raise ServiceUnavailable(f"Respuesta inválida del servicio de pedidos en {method} {path}")
        return payload

    # Pedidos

    def create_order(self, data, idempotency_key=None):
        headers = {"Idempotency-Key": idempotency_key} if idempotency_key else None
        return self._request("POST", "/orders", json=data, headers=headers)

    def get_order(self, order_id):
        return self._request("GET", f"/orders/{order_id}", allow_missing=True)

    def list_by_user(self, user_email):
        return self._request("GET", "/orders", params={"userEmail": user_email}) or []

    def list_admin(self, status=None, search=None):
        params = {}
        if status:
            params["status"] = status
        if search:
            params["search"] = search
        return self._request("GET", "/admin/orders", params=params) or []

    def update_status(self, order_id, status, payment_status=None):
        body = {"status": status}
        if payment_status is not None:
            body["payment_status"] = payment_status
        return self._request("POST", f"/admin/orders/{order_id}/status", json=body)

    def update_payment_status(self, order_id, payment_status):
        return self._request("POST", f"/admin/orders/{order_id}/payment-status",
                             json={"payment_status": payment_status})

    def update_admin_notes(self, order_id, admin_notes):
        return self._request("POST", f"/admin/orders/{order_id}/admin-notes",
                             json={"admin_notes": admin_notes})

    def delete_order(self, order_id):
        return self._request("DELETE", f"/admin/orders/{order_id}", allow_missing=True) is not None

    # Cotización, factura y cobros

    def quote(self, order_id, payload):
        return self._request("POST", f"/orders/{order_id}/quote", json=payload)

    def generate_invoice(self, order_id):
        return self._request("POST", f"/orders/{order_id}/invoice/generate")["invoice"]

    def get_invoice(self, order_id):
        return self._request("GET", f"/orders/{order_id}/invoice", allow_missing=True)

    def attempt_payment(self, order_id):
        return self._request("POST", f"/orders/{order_id}/payment/attempt")

    def retry_payment(self, order_id):
        return self._request("POST", f"/orders/{order_id}/payment/retry")

    def save_payment_method(self, order_id, data, replace=False):
        path = f"/orders/{order_id}/payment-method" + ("/update" if replace else "")
        return self._request("POST", path, json=data)

    def payment_history(self, order_id):
        return self._request("GET", f"/orders/{order_id}/payments") or []


def _json_or_none(response):
    try:
        return response.json()
    except ValueError:
        return None
