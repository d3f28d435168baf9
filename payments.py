# payments.py
"""
Paystack integration.

Checkout starts a Paystack transaction for a freshly issued PENDING ticket;
Paystack later reports the outcome through a signed webhook, which confirms
or cancels the ticket. Amounts are stored in naira and sent to Paystack in
kobo.
"""
import hashlib
import hmac
import logging
import time
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal

import requests

from errors import NotFound, TicketingError, UpstreamFailure
from models import (PAYMENT_FAILED, PAYMENT_PENDING, PAYMENT_REFUNDED,
                    PAYMENT_SUCCESS, TICKET_PENDING, PaymentLog, db, utcnow)

logger = logging.getLogger(__name__)

CHARGE_SUCCESS = 'charge.success'
CHARGE_FAILED = 'charge.failed'


def to_kobo(amount):
    return int((Decimal(str(amount)) * 100).quantize(Decimal('1'), rounding=ROUND_HALF_UP))


def from_kobo(amount):
    return Decimal(int(amount)) / 100


def compute_webhook_signature(secret, raw_body):
    return hmac.new(secret.encode('utf-8'), raw_body, hashlib.sha512).hexdigest()


def verify_webhook_signature(secret, raw_body, signature):
    calculated = compute_webhook_signature(secret, raw_body)
    return hmac.compare_digest(calculated.encode('utf-8'), signature.encode('utf-8'))


def _parse_paid_at(value):
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace('Z', '+00:00'))
    except (TypeError, ValueError):
        return None


class PaystackClient:
    """Thin wrapper over the Paystack REST API."""

    def __init__(self, secret_key, base_url='https://api.paystack.co', session=None, timeout=10):
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({
            'Authorization': f'Bearer {secret_key}',
            'Content-Type': 'application/json',
        })

    def _request(self, method, path, **kwargs):
        url = f'{self.base_url}{path}'
        try:
            response = self.session.request(method, url, timeout=self.timeout, **kwargs)
            body = response.json()
        except (requests.RequestException, ValueError) as exc:
            logger.error('Paystack %s %s failed: %s', method, path, exc)
            raise UpstreamFailure('Payment provider is unavailable') from exc

        if response.status_code >= 400 or not body.get('status'):
            logger.error('Paystack %s %s rejected: %s', method, path, body.get('message'))
            raise UpstreamFailure('Payment provider rejected the request')
        return body.get('data') or {}

    def initialize_transaction(self, email, amount, currency, reference, callback_url, metadata):
        return self._request('POST', '/transaction/initialize', json={
            'email': email,
            'amount': amount,
            'currency': currency,
            'reference': reference,
            'callback_url': callback_url,
            'metadata': metadata,
        })

    def verify_transaction(self, reference):
        return self._request('GET', f'/transaction/verify/{reference}')

    def refund(self, reference, amount=None):
        payload = {'transaction': reference}
        if amount is not None:
            payload['amount'] = amount
        return self._request('POST', '/refund', json=payload)


class PaymentService:

    def __init__(self, client, tickets, notifier, callback_url, currency='NGN', clock=utcnow):
        self.client = client
        self.tickets = tickets
        self.notifier = notifier
        self.callback_url = callback_url
        self.currency = currency
        self.clock = clock

    # ------------------------------------------------------------------
    # Checkout
    # ------------------------------------------------------------------

    def checkout(self, event_id, buyer_name, buyer_email, buyer_phone, user_id=None):
        """
        Issue a ticket and start paying for it.

        Returns ``(ticket, payment)``; ``payment`` is None for free events,
        whose tickets are confirmed straight away. A ticket whose payment
        cannot be started is cancelled so it stops holding a seat.
        """
        ticket = self.tickets.create_ticket(event_id, buyer_name, buyer_email, buyer_phone, user_id)
        price = ticket.event.price

        if not price:
            return self.tickets.confirm_ticket(ticket.id), None

        try:
            payment = self.initialize_payment(ticket, price)
        except UpstreamFailure:
            self.tickets.cancel_ticket(ticket.id)
            raise
        return ticket, payment

    def initialize_payment(self, ticket, amount):
        reference = f'TKT-{ticket.id}-{int(time.time() * 1000)}'
        data = self.client.initialize_transaction(
            email=ticket.buyer_email,
            amount=to_kobo(amount),
            currency=self.currency,
            reference=reference,
            callback_url=self.callback_url,
            metadata={
                'ticketId': ticket.id,
                'buyerName': ticket.buyer_name,
                'buyerPhone': ticket.buyer_phone,
                'eventTitle': ticket.event.title,
            },
        )
        reference = data.get('reference', reference)

        db.session.add(PaymentLog(
            ticket_id=ticket.id,
            amount=amount,
            currency=self.currency,
            reference=reference,
            provider='paystack',
            status=PAYMENT_PENDING,
        ))
        db.session.commit()

        return {
            'authorization_url': data.get('authorization_url'),
            'access_code': data.get('access_code'),
            'reference': reference,
        }

    def verify_payment(self, reference):
        data = self.client.verify_transaction(reference)
        return {
            'status': data.get('status'),
            'amount': str(from_kobo(data.get('amount', 0))),
            'currency': data.get('currency'),
            'reference': data.get('reference'),
            'paid_at': data.get('paid_at'),
            'channel': data.get('channel'),
            'metadata': data.get('metadata'),
        }

    # ------------------------------------------------------------------
    # Webhook
    # ------------------------------------------------------------------

    def handle_webhook(self, payload):
        """
        Apply a verified Paystack event. Returns a short outcome label.

        The webhook is always acknowledged: ticket lifecycle failures are
        logged here and never bubble up to Paystack.
        """
        event = payload.get('event')
        data = payload.get('data') or {}
        logger.info('Webhook received: %s', event)

        if event == CHARGE_SUCCESS:
            return self._handle_successful_payment(data)
        if event == CHARGE_FAILED:
            return self._handle_failed_payment(data)
        return 'ignored'

    def _find_log(self, reference):
        if not reference:
            return None
        return db.session.scalars(
            db.select(PaymentLog).where(PaymentLog.reference == reference)
        ).first()

    def _handle_successful_payment(self, data):
        reference = data.get('reference')
        payment_log = self._find_log(reference)
        if payment_log is None:
            logger.warning('Payment log not found for reference: %s', reference)
            return 'unmatched'
        if payment_log.status == PAYMENT_SUCCESS:
            # A retried delivery still confirms a ticket left PENDING by a failed attempt
            ticket = payment_log.ticket
            if ticket is None or ticket.status != TICKET_PENDING:
                logger.info('Duplicate charge.success for %s', reference)
                return 'duplicate'
            logger.info('Retrying confirmation of ticket %s for %s', ticket.id, reference)
        else:
            payment_log.status = PAYMENT_SUCCESS
            payment_log.paid_at = _parse_paid_at(data.get('paid_at')) or self.clock()
            payment_log.channel = data.get('channel')
            payment_log.raw_payload = data
            db.session.commit()

            if payment_log.ticket_id is None:
                return 'recorded'

        try:
            ticket = self.tickets.confirm_ticket(payment_log.ticket_id)
        except TicketingError as exc:
            logger.error('Error confirming ticket %s for %s: %s', payment_log.ticket_id, reference, exc)
            return 'rejected'

        self.notifier.payment_received({
            'buyer_name': ticket.buyer_name,
            'buyer_email': ticket.buyer_email,
            'amount': payment_log.amount,
            'currency': payment_log.currency,
            'reference': reference,
            'event_title': ticket.event.title,
        })
        return 'confirmed'

    def _handle_failed_payment(self, data):
        reference = data.get('reference')
        payment_log = self._find_log(reference)
        if payment_log is None:
            logger.warning('Payment log not found for reference: %s', reference)
            return 'unmatched'

        payment_log.status = PAYMENT_FAILED
        payment_log.raw_payload = data
        db.session.commit()

        if payment_log.ticket_id is None:
            return 'recorded'

        try:
            self.tickets.cancel_ticket(payment_log.ticket_id)
        except TicketingError as exc:
            logger.error('Error cancelling ticket %s for %s: %s', payment_log.ticket_id, reference, exc)
            return 'rejected'
        return 'cancelled'

    # ------------------------------------------------------------------
    # Admin
    # ------------------------------------------------------------------

    def list_payment_logs(self, status=None, ticket_id=None, start_date=None, end_date=None):
        query = db.select(PaymentLog).order_by(PaymentLog.created_at.desc())
        if status:
            query = query.where(PaymentLog.status == status)
        if ticket_id:
            query = query.where(PaymentLog.ticket_id == ticket_id)
        if start_date:
            query = query.where(PaymentLog.created_at >= start_date)
        if end_date:
            query = query.where(PaymentLog.created_at <= end_date)
        return db.session.scalars(query).all()

    def get_payment_log(self, payment_id):
        payment_log = db.session.get(PaymentLog, payment_id)
        if payment_log is None:
            raise NotFound('Payment log not found')
        return payment_log

    def initiate_refund(self, reference, amount=None):
        payment_log = self._find_log(reference)
        if payment_log is None:
            raise NotFound('Payment log not found')

        data = self.client.refund(reference, to_kobo(amount) if amount is not None else None)
        payment_log.status = PAYMENT_REFUNDED
        db.session.commit()
        logger.info('Refund initiated for %s', reference)
        return data
