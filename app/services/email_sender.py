"""
Servicio: Envío de correos del worker
Confirmación de pedido y recibo de pago, por SMTP.

Sin SMTP configurado el envío se omite con una advertencia y se considera
exitoso, así la cola no recicla el trabajo para siempre.
"""
import html
import logging
import smtplib
from email.message import EmailMessage
from email.utils import formataddr

from .job_queue import ORDER_CREATED, RECEIPT

logger = logging.getLogger(__name__)


def order_created_email(job):
    subject = f"LUMA Order Confirmation #{job.order_id}"
    body = f"""
        <h2>Your order has been created</h2>
        <p><strong>Order #:</strong> {job.order_id}</p>
        <p><strong>Service:</strong> {html.escape(job.service_type)}</p>
        <p><strong>Scheduled At:</strong> {html.escape(job.scheduled_at)}</p>
        <p><strong>Address:</strong> {html.escape(job.address)}</p>
        <p>Thanks for scheduling with LUMA.</p>"""
    return subject, body


def receipt_email(job):
    amount = job.amount or 0
    transaction_id = job.transaction_id or f"TXN-{job.order_id:08d}"
    subject = f"LUMA Payment Receipt #{job.order_id}"
    body = f"""
        <h2>Payment Received</h2>
        <p><strong>Receipt #:</strong> RCP-{job.order_id:06d}</p>
        <p><strong>Order #:</strong> {job.order_id}</p>
        <p><strong>Service:</strong> {html.escape(job.service_type)}</p>
        <p><strong>Transaction ID:</strong> {html.escape(transaction_id)}</p>
        <p><strong>Total Paid:</strong> ${amount:.2f}</p>
        <p><strong>Address:</strong> {html.escape(job.address)}</p>
        <p>Thank you for choosing LUMA.</p>"""
    return subject, body


RENDERERS = {
    ORDER_CREATED: order_created_email,
    RECEIPT: receipt_email,
}


class SmtpEmailSender:

    def __init__(self, host=None, port=587, username=None, password=None, use_tls=True,
                 from_address=None, from_name="LUMA Laundry", timeout=30):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.use_tls = use_tls
        self.from_address = from_address
        self.from_name = from_name
        self.timeout = timeout

    @classmethod
    def from_config(cls, config):
        return cls(
            host=config.get("SMTP_HOST"),
            port=config.get("SMTP_PORT", 587),
            username=config.get("SMTP_USERNAME"),
            password=config.get("SMTP_PASSWORD"),
            use_tls=config.get("SMTP_USE_TLS", True),
            from_address=config.get("MAIL_FROM_ADDRESS"),
            from_name=config.get("MAIL_FROM_NAME") or "LUMA Laundry",
        )

    @property
    def configured(self):
        return bool(self.host and self.from_address)

    def send_job(self, job):
        renderer = RENDERERS.get(job.job_type)
        if renderer is None:
            logger.warning(f"⚠️ Tipo de trabajo desconocido {job.job_type}; se descarta")
            return True
        subject, body = renderer(job)
        return self.send(job.to_email, subject, body)

    def send(self, to_email, subject, html_body):
        """True si se envió (o se omitió por falta de SMTP), False si falló"""
        if not self.configured:
            logger.warning(f"⚠️ Correo omitido, SMTP no configurado. Para={to_email}, Asunto={subject}")
            return True

        message = EmailMessage()
        message["From"] = formataddr((self.from_name, self.from_address))
        message["To"] = to_email
        message["Subject"] = subject
        message.set_content("This message requires an HTML-capable email client.")
        message.add_alternative(html_body, subtype="html")

        try:
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as smtp:
                if self.use_tls:
                    smtp.starttls()
                if self.username and self.password:
                    smtp.login(self.username, self.password)
                smtp.send_message(message)
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"❌ No se pudo enviar correo. Para={to_email}, Asunto={subject}: {e}")
            return False

        logger.info(f"📧 Correo enviado. Para={to_email}, Asunto={subject}")
        return True
