import os
from dataclasses import dataclass, field

from dotenv import load_dotenv


@dataclass
class Config:
    db: dict
    rabbitmq: dict
    sessions_table: str = "feedback_sessions"
    submissions_table: str = "feedback_submissions"
    attendance_table: str = "feedback_attendance"
    mail_exchange: str = "mail"
    mail_routing_key: str = "mail.send"
    monitoring_exchange: str = "feedback"
    client_url: str = "https://localhost"
    support_email: str = ""
    dev_mode: bool = False
    notification_timeout_hours: float = 2
    admin_pin_hash: str = ""
    secret_key: str = ""
    rate_limits: list = field(default_factory=lambda: ["200 per day", "50 per hour"])


def _flag(value):
    return str(value).strip().lower() in ("1", "true", "yes", "on")


def load_config(env_file=None) -> Config:
    """Read the service configuration from the environment (and .env)."""
    load_dotenv(env_file)

    db = {
        'host':     os.getenv('LOCAL_DB_HOST', 'db'),
        'user':     os.getenv('LOCAL_DB_USER', 'root'),
        'password': os.getenv('LOCAL_DB_PASSWORD', 'root'),
        'database': os.getenv('LOCAL_DB_NAME', 'feedback'),
    }
    rabbitmq = {
        'host':     os.getenv('RABBITMQ_HOST', 'rabbitmq'),
        'port':     int(os.getenv('RABBITMQ_AMQP_PORT', 5672)),
        'user':     os.getenv('RABBITMQ_USER'),
        'password': os.getenv('RABBITMQ_PASSWORD'),
        'vhost':    os.getenv('RABBITMQ_VHOST', os.getenv('RABBITMQ_USER', '/')),
    }

    return Config(
        db=db,
        rabbitmq=rabbitmq,
        sessions_table=os.getenv('SESSIONS_TABLE', 'feedback_sessions'),
        submissions_table=os.getenv('SUBMISSIONS_TABLE', 'feedback_submissions'),
        attendance_table=os.getenv('ATTENDANCE_TABLE', 'feedback_attendance'),
        mail_exchange=os.getenv('MAIL_EXCHANGE', 'mail'),
        mail_routing_key=os.getenv('MAIL_ROUTING_KEY', 'mail.send'),
        monitoring_exchange=os.getenv('MONITORING_EXCHANGE', 'feedback'),
        client_url=os.getenv('CLIENT_URL', 'https://localhost').rstrip('/'),
        support_email=os.getenv('SUPPORT_EMAIL', ''),
        dev_mode=_flag(os.getenv('DEV_MODE', 'false')),
        notification_timeout_hours=float(os.getenv('NOTIFICATION_TIMEOUT_HOURS', 2)),
        admin_pin_hash=os.getenv('ADMIN_PIN_HASH', ''),
        secret_key=os.getenv('APP_SECRET_KEY', ''),
    )
