import logging
import xml.etree.ElementTree as ET
from datetime import datetime, timezone

import pika

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("feedback")

# Set once at startup by init_monitoring(); None keeps logging local only.
_settings = None


def init_monitoring(rabbitmq: dict, exchange: str = "feedback", sender: str = "feedback-service"):
    global _settings
    _settings = {"rabbitmq": rabbitmq, "exchange": exchange, "sender": sender}


def reset_monitoring():
    global _settings
    _settings = None


def get_channel(rabbitmq: dict):
    creds = pika.PlainCredentials(rabbitmq["user"], rabbitmq["password"])
    params = pika.ConnectionParameters(
        host=rabbitmq["host"],
        port=rabbitmq["port"],
        virtual_host=rabbitmq["vhost"],
        credentials=creds
    )
    conn = pika.BlockingConnection(params)
    ch = conn.channel()
    return conn, ch


def build_log_message(message: str, level: str, sender: str) -> bytes:
    log = ET.Element("log")
    ET.SubElement(log, "sender").text = sender
    ET.SubElement(log, "timestamp").text = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")
    ET.SubElement(log, "level").text = level
    ET.SubElement(log, "message").text = message
    return ET.tostring(log, encoding="utf-8")


def send_monitoring_log(message: str, level: str = "info"):
    if _settings is None:
        return

    xml_bytes = build_log_message(message, level, _settings["sender"])
    try:
        conn, ch = get_channel(_settings["rabbitmq"])
        try:
            ch.basic_publish(
                exchange=_settings["exchange"],
                routing_key="monitoring.log",
                body=xml_bytes,
                properties=pika.BasicProperties(content_type="application/xml")
            )
        finally:
            conn.close()
    except Exception as e:
        logger.warning(f"Failed to send monitoring log: {e}")


def log_info(message: str):
    logger.info(message)
    send_monitoring_log(message, level="info")


def log_error(message: str):
    logger.error(message)
    send_monitoring_log(message, level="error")
