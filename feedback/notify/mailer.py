import xml.etree.ElementTree as ET

import pika
from pika.exceptions import AMQPError

from feedback.errors import MailError
from feedback.monitoring.monitoring import get_channel, log_info


class Mailer:
    """Hands outgoing mail to the mail relay over RabbitMQ.

    Each message is published as an XML <mail> document on the configured
    exchange; transport (SMTP, DKIM, attachments) is the relay's concern.
    """

    def __init__(self, config):
        self.rabbitmq = dict(config.rabbitmq)
        self.exchange = config.mail_exchange
        self.routing_key = config.mail_routing_key

    def _get_channel(self):
        return get_channel(self.rabbitmq)

    @staticmethod
    def _mail_to_xml(address: str, subject: str, html: str) -> bytes:
        root = ET.Element("feedback")
        info = ET.SubElement(root, "info")
        ET.SubElement(info, "sender").text = "feedback"
        ET.SubElement(info, "operation").text = "send"

        mail = ET.SubElement(root, "mail")
        ET.SubElement(mail, "to").text = address
        ET.SubElement(mail, "subject").text = subject
        ET.SubElement(mail, "html").text = html
        return ET.tostring(root, encoding="utf-8")

    def send_mail(self, address: str, subject: str, html: str):
        if not address:
            raise MailError("No recipient address")

        payload = self._mail_to_xml(address, subject, html)
        try:
            conn, ch = self._get_channel()
            try:
                ch.basic_publish(
                    exchange=self.exchange,
                    routing_key=self.routing_key,
                    body=payload,
                    properties=pika.BasicProperties(content_type="application/xml", delivery_mode=2)
                )
            finally:
                conn.close()
        except AMQPError as e:
            raise MailError(f"Failed to queue mail for {address}: {e}") from e

        log_info(f"Mail '{subject}' queued for {address}")
