"""
Servicio: Errores del núcleo de pedidos
Cada error lleva un código estable y el status HTTP con que se responde
"""


class OrderError(Exception):
    code = "error"
    status_code = 400

    def __init__(self, message, **details):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self):
        payload = {"error": self.message, "code": self.code}
        if self.details:
            payload["details"] = self.details
        return payload


class ValidationError(OrderError):
    """Entrada mal formada o incompleta; no se ejecutó ningún efecto"""
    code = "validation"
    status_code = 400


class OrderNotFound(OrderError):
    code = "not_found"
    status_code = 404

    def __init__(self, order_id):
        super().__init__(f"Pedido #{order_id} no encontrado", order_id=order_id)


class BusinessRuleError(OrderError):
    """Transición o acción no permitida por las reglas del negocio"""
    code = "business_rule"
    status_code = 409


class MaxPaymentAttemptsReached(BusinessRuleError):
    code = "max_attempts"


class PaymentInProgress(BusinessRuleError):
    code = "payment_in_progress"


class ServiceUnavailable(OrderError):
    """El servicio remoto o la pasarela no respondieron a tiempo"""
    code = "unavailable"
    status_code = 503


ERRORS_BY_CODE = {
    cls.code: cls
    for cls in (
        ValidationError,
        BusinessRuleError,
        MaxPaymentAttemptsReached,
        PaymentInProgress,
        ServiceUnavailable,
    )
}


def error_from_payload(payload, status_code):
    """Reconstruye el error que respondió el servicio remoto"""
    payload = payload if isinstance(payload, dict) else {}
    message = payload.get("error") or f"Error remoto ({status_code})"
    code = payload.get("code")

    if code == OrderNotFound.code or status_code == 404:
        details = payload.get("details") or {}
        return OrderNotFound(details.get("order_id", "?"))

    cls = ERRORS_BY_CODE.get(code)
    if cls is None:
        if status_code >= 500:
            cls = ServiceUnavailable
        elif status_code == 409:
            cls = BusinessRuleError
        else:
            cls = ValidationError
    return cls(message, **(payload.get("details") or {}))
