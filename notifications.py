# notifications.py
import json
import logging
from html import escape

import requests

from errors import EmailDeliveryError

logger = logging.getLogger(__name__)

BREVO_SEND_URL = 'https://api.brevo.com/v3/smtp/email'


class BrevoMailer:
    """Sends transactional email through the Brevo HTTP API."""

    def __init__(self, api_key, sender_email, sender_name, session=None, timeout=10):
        self.api_key = api_key
        self.sender = {'name': sender_name, 'email': sender_email}
        self.session = session or requests.Session()
        self.timeout = timeout

    def send(self, to_email, to_name, subject, html, text=None):
        if not self.api_key:
            raise EmailDeliveryError('Email delivery is not configured')

        email_data = {
            'sender': self.sender,
            'to': [{'email': to_email, 'name': to_name}],
            'subject': subject,
            'htmlContent': html,
        }
        if text:
            email_data['textContent'] = text

        headers = {
            'accept': 'application/json',
            'api-key': self.api_key,
            'content-type': 'application/json',
        }
        try:
            response = self.session.post(BREVO_SEND_URL, headers=headers,
                                         data=json.dumps(email_data), timeout=self.timeout)
        except requests.RequestException as exc:
            raise EmailDeliveryError(f'Error sending email: {exc}') from exc

        if response.status_code != 201:
            raise EmailDeliveryError(f'Error sending email: {response.status_code}, {response.text}')


def render_ticket_email(details, frontend_url):
    ticket_url = f"{frontend_url.rstrip('/')}/tickets/{details['ticket_id']}"
    safe = {key: escape(str(value)) for key, value in details.items() if value is not None}

    subject = f"Your Ticket for {details['event_title']}"
    html = f"""
      <h1>Your Ticket Confirmation</h1>
      <p>Dear {safe['buyer_name']},</p>
      <p>Thank you for your purchase! Here are your ticket details:</p>
      <div style="border: 2px solid #333; padding: 20px; margin: 20px 0; border-radius: 8px;">
        <h2>{safe['event_title']}</h2>
        <p><strong>Date:</strong> {safe['event_date']}</p>
        <p><strong>Time:</strong> {safe['event_time']}</p>
        <p><strong>Venue:</strong> {safe['event_venue']}</p>
        <p><strong>Ticket Code:</strong> {safe['ticket_code']}</p>
        <div style="text-align: center; margin: 20px 0;">
          <img src="{safe.get('qr_image', '')}" alt="Ticket QR Code" style="max-width: 300px;"/>
        </div>
        <p style="text-align: center;"><a href="{escape(ticket_url)}">Download Ticket</a></p>
      </div>
      <p><strong>Important:</strong> Please present this QR code at the event entrance.</p>
      <p>See you at the event!</p>
    """
    text = (
        f"Your Ticket Confirmation\n\n"
        f"Dear {details['buyer_name']},\n\n"
        f"Event: {details['event_title']}\n"
        f"Date: {details['event_date']}\n"
        f"Time: {details['event_time']}\n"
        f"Venue: {details['event_venue']}\n"
        f"Ticket Code: {details['ticket_code']}\n\n"
        f"Download your ticket: {ticket_url}\n"
    )
    return subject, html, text


def render_payment_email(details):
    safe = {key: escape(str(value)) for key, value in details.items()}
    subject = 'Payment Confirmation - Dance School'
    html = f"""
      <h1>Payment Received</h1>
      <p>Dear {safe['buyer_name']},</p>
      <p>We have successfully received your payment.</p>
      <div style="background: #f5f5f5; padding: 20px; margin: 20px 0; border-radius: 8px;">
        <p><strong>Amount:</strong> {safe['currency']} {details['amount']:,.2f}</p>
        <p><strong>Reference:</strong> {safe['reference']}</p>
        <p><strong>Event:</strong> {safe['event_title']}</p>
      </div>
      <p>Your ticket will be sent in a separate email.</p>
      <p>Thank you for your purchase!</p>
    """
    return subject, html, None


class TicketNotifier:
    """Best-effort buyer notifications.

    Callers pass plain dicts built after their transaction has committed.
    With an executor the send runs in the background; either way a delivery
    failure is logged and never reaches the caller.
    """

    def __init__(self, mailer, frontend_url, executor=None):
        self.mailer = mailer
        self.frontend_url = frontend_url
        self.executor = executor

    def ticket_confirmed(self, details):
        self._dispatch(self._send_ticket_email, details)

    def payment_received(self, details):
        self._dispatch(self._send_payment_email, details)

    def _send_ticket_email(self, details):
        subject, html, text = render_ticket_email(details, self.frontend_url)
        self.mailer.send(details['buyer_email'], details['buyer_name'], subject, html, text)

    def _send_payment_email(self, details):
        subject, html, text = render_payment_email(details)
        self.mailer.send(details['buyer_email'], details['buyer_name'], subject, html, text)

    def _dispatch(self, send, details):
        if self.executor is None:
            self._run(send, details)
        else:
            self.executor.submit(self._run, send, details)

    @staticmethod
    def _run(send, details):
        try:
            send(details)
        except Exception:
            logger.exception('Notification to %s failed', details.get('buyer_email'))
