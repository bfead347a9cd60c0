import xml.etree.ElementTree as ET
from unittest.mock import MagicMock, patch

import pytest
from pika.exceptions import AMQPConnectionError

from feedback.config import Config
from feedback.errors import MailError
from feedback.notify.mailer import Mailer


@pytest.fixture
def mailer():
    config = Config(
        db={},
        rabbitmq={"host": "rabbitmq", "port": 5672, "user": "guest", "password": "guest", "vhost": "/"},
        mail_exchange="mail", mail_routing_key="mail.send",
    )
    return Mailer(config)

# ---------------------------
# _mail_to_xml
# ---------------------------

def test_mail_to_xml_contains_all_fields():
    xml = ET.fromstring(Mailer._mail_to_xml("bob@example.com", "Pin Reset: T", "<p>Hi</p>"))

    assert xml.find("info/sender").text == "feedback"
    assert xml.find("info/operation").text == "send"
    assert xml.find("mail/to").text == "bob@example.com"
    assert xml.find("mail/subject").text == "Pin Reset: T"
    assert xml.find("mail/html").text == "<p>Hi</p>"

# ---------------------------
# send_mail
# ---------------------------

def test_send_mail_publishes_and_closes(mailer):
    conn, ch = MagicMock(), MagicMock()
    with patch.object(mailer, "_get_channel", return_value=(conn, ch)):
        mailer.send_mail("bob@example.com", "Subject", "<p>Body</p>")

    kwargs = ch.basic_publish.call_args.kwargs
    assert kwargs["exchange"] == "mail"
    assert kwargs["routing_key"] == "mail.send"
    assert kwargs["properties"].delivery_mode == 2
    assert b"bob@example.com" in kwargs["body"]
    conn.close.assert_called_once()


def test_send_mail_wraps_broker_errors(mailer):
    with patch.object(mailer, "_get_channel", side_effect=AMQPConnectionError("refused")):
        with pytest.raises(MailError):
            mailer.send_mail("bob@example.com", "Subject", "<p>Body</p>")


def test_send_mail_closes_connection_when_publish_fails(mailer):
    conn, ch = MagicMock(), MagicMock()
    ch.basic_publish.side_effect = AMQPConnectionError("closed")
    with patch.object(mailer, "_get_channel", return_value=(conn, ch)):
        with pytest.raises(MailError):
            mailer.send_mail("bob@example.com", "Subject", "<p>Body</p>")
    conn.close.assert_called_once()


def test_send_mail_without_address(mailer):
    with pytest.raises(MailError):
        mailer.send_mail("", "Subject", "<p>Body</p>")


@patch("feedback.monitoring.monitoring.pika.BlockingConnection")
def test_get_channel_uses_configured_vhost(mock_connection, mailer):
    conn, ch = mailer._get_channel()

    params = mock_connection.call_args.args[0]
    assert params.host == "rabbitmq"
    assert params.virtual_host == "/"
    assert ch is mock_connection.return_value.channel.return_value


@patch("feedback.notify.mailer.get_channel", return_value=("conn", "ch"))
def test_get_channel_delegates_to_monitoring_factory(mock_get_channel, mailer):
    assert mailer._get_channel() == ("conn", "ch")
    mock_get_channel.assert_called_once_with(mailer.rabbitmq)
