"""
Worker de notificaciones
Proceso aparte que drena la cola de trabajos por HTTP y envía los correos.

Ciclo: pedir el siguiente trabajo (long-poll), enviarlo, ack si salió bien
o reencolar si falló. Sin trabajos espera JOB_POLL_INTERVAL segundos; un
error en el ciclo se registra y el worker sigue.
"""
import logging
import time

from .services.email_sender import SmtpEmailSender
from .services.job_queue import JobClient

logger = logging.getLogger(__name__)

BETWEEN_JOBS_DELAY = 2


class NotificationWorker:

    def __init__(self, job_client, email_sender, poll_interval=5, long_poll=0,
                 between_jobs_delay=BETWEEN_JOBS_DELAY, sleep=time.sleep):
        self.job_client = job_client
        self.email_sender = email_sender
        self.poll_interval = poll_interval
        self.long_poll = long_poll
        self.between_jobs_delay = between_jobs_delay
        self.sleep = sleep
        self.running = False

    @classmethod
    def from_config(cls, config):
        return cls(
            job_client=JobClient(
                config["ORDER_SERVICE_URL"], timeout=config.get("ORDER_SERVICE_TIMEOUT", 8)
            ),
            email_sender=SmtpEmailSender.from_config(config),
            poll_interval=config.get("JOB_POLL_INTERVAL", 5),
            long_poll=config.get("JOB_LONG_POLL_MAX", 0),
        )

    def run_once(self):
        """
        Procesa a lo sumo un trabajo.

        Devuelve None si la cola estaba vacía, True si se envió y se hizo
        ack, False si se reencoló.
        """
        job = self.job_client.next_job(wait=self.long_poll)
        if job is None:
            return None

        try:
            sent = self.email_sender.send_job(job)
        except Exception:
            logger.exception(f"❌ Error enviando trabajo {job.job_id}")
            sent = False

        if sent:
            self.job_client.ack(job.job_id)
            logger.info(f"✅ Trabajo {job.job_type} del pedido #{job.order_id} completado")
            return True

        self.job_client.requeue(job)
        return False

    def run_forever(self):
        self.running = True
        logger.info("🚀 Worker de notificaciones iniciado")
        while self.running:
            try:
                processed = self.run_once()
            except Exception:
                logger.exception("❌ Error en el ciclo del worker")
                self.sleep(self.poll_interval)
                continue

            if processed is not None:
                self.sleep(self.between_jobs_delay)
            elif not self.long_poll:
                # Con long-poll la espera ya ocurrió en el servidor
                self.sleep(self.poll_interval)

    def stop(self):
        self.running = False
