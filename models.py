# models.py
import uuid
from datetime import datetime, timezone

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()

TICKET_PENDING = 'PENDING'
TICKET_CONFIRMED = 'CONFIRMED'
TICKET_USED = 'USED'
TICKET_CANCELLED = 'CANCELLED'

# Tickets that hold a seat against event capacity
ACTIVE_TICKET_STATUSES = (TICKET_PENDING, TICKET_CONFIRMED)

PAYMENT_PENDING = 'PENDING'
PAYMENT_SUCCESS = 'SUCCESS'
PAYMENT_FAILED = 'FAILED'
PAYMENT_REFUNDED = 'REFUNDED'


def new_id():
    return str(uuid.uuid4())


def utcnow():
    return datetime.now(timezone.utc)


def isoformat(value):
    return value.isoformat() if value else None


class User(db.Model):
    __tablename__ = 'users'

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    name = db.Column(db.String(100), nullable=False)
    email = db.Column(db.String(120), unique=True, nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    tickets = db.relationship('Ticket', back_populates='user')


class Event(db.Model):
    __tablename__ = 'events'

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    title = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=True)
    date = db.Column(db.Date, nullable=False, index=True)
    time = db.Column(db.String(20), nullable=False)
    venue = db.Column(db.String(200), nullable=False)
    capacity = db.Column(db.Integer, nullable=False)
    price = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    image_url = db.Column(db.String(500), nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    tickets = db.relationship('Ticket', back_populates='event', cascade='all, delete-orphan')

    def to_dict(self, sold_tickets=None):
        data = {
            'id': self.id,
            'title': self.title,
            'description': self.description,
            'date': self.date.isoformat(),
            'time': self.time,
            'venue': self.venue,
            'capacity': self.capacity,
            'price': str(self.price),
            'image_url': self.image_url,
            'is_active': self.is_active,
            'created_at': isoformat(self.created_at),
        }
        if sold_tickets is not None:
            data['sold_tickets'] = sold_tickets
            data['available_tickets'] = max(self.capacity - sold_tickets, 0)
        return data


class Ticket(db.Model):
    __tablename__ = 'tickets'
    __table_args__ = (
        db.Index('ix_tickets_event_status', 'event_id', 'status'),
    )

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    event_id = db.Column(db.String(36), db.ForeignKey('events.id'), nullable=False)
    user_id = db.Column(db.String(36), db.ForeignKey('users.id'), nullable=True, index=True)

    ticket_code = db.Column(db.String(12), unique=True, nullable=False)
    qr_payload = db.Column(db.Text, unique=True, nullable=False)
    qr_image = db.Column(db.Text, nullable=True)
    status = db.Column(db.String(16), nullable=False, default=TICKET_PENDING)

    buyer_name = db.Column(db.String(100), nullable=False)
    buyer_email = db.Column(db.String(120), nullable=False, index=True)
    buyer_phone = db.Column(db.String(20), nullable=False)

    issued_at = db.Column(db.DateTime(timezone=True), nullable=True)
    used_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    event = db.relationship('Event', back_populates='tickets')
    user = db.relationship('User', back_populates='tickets')
    payment_log = db.relationship('PaymentLog', back_populates='ticket', uselist=False)
    scan_logs = db.relationship('ScanLog', cascade='all, delete-orphan')

    def to_dict(self, include_event=True):
        data = {
            'id': self.id,
            'event_id': self.event_id,
            'user_id': self.user_id,
            'ticket_code': self.ticket_code,
            'qr_payload': self.qr_payload,
            'qr_image': self.qr_image,
            'status': self.status,
            'buyer_name': self.buyer_name,
            'buyer_email': self.buyer_email,
            'buyer_phone': self.buyer_phone,
            'issued_at': isoformat(self.issued_at),
            'used_at': isoformat(self.used_at),
            'created_at': isoformat(self.created_at),
        }
        if include_event and self.event is not None:
            data['event'] = self.event.to_dict()
        if self.payment_log is not None:
            data['payment'] = self.payment_log.to_dict()
        return data


class PaymentLog(db.Model):
    __tablename__ = 'payment_logs'

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    ticket_id = db.Column(db.String(36), db.ForeignKey('tickets.id'), unique=True, nullable=True)
    amount = db.Column(db.Numeric(10, 2), nullable=False)
    currency = db.Column(db.String(3), nullable=False, default='NGN')
    reference = db.Column(db.String(100), unique=True, nullable=False)
    provider = db.Column(db.String(20), nullable=False, default='paystack')
    status = db.Column(db.String(16), nullable=False, default=PAYMENT_PENDING, index=True)
    paid_at = db.Column(db.DateTime(timezone=True), nullable=True)
    channel = db.Column(db.String(50), nullable=True)
    raw_payload = db.Column(db.JSON, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)

    ticket = db.relationship('Ticket', back_populates='payment_log')

    def to_dict(self):
        return {
            'id': self.id,
            'ticket_id': self.ticket_id,
            'amount': str(self.amount),
            'currency': self.currency,
            'reference': self.reference,
            'provider': self.provider,
            'status': self.status,
            'paid_at': isoformat(self.paid_at),
            'channel': self.channel,
            'created_at': isoformat(self.created_at),
        }


class ScanLog(db.Model):
    __tablename__ = 'scan_logs'

    id = db.Column(db.Integer, primary_key=True)
    ticket_id = db.Column(db.String(36), db.ForeignKey('tickets.id'), nullable=False, index=True)
    name = db.Column(db.String(100), nullable=False)
    scanned_at = db.Column(db.DateTime(timezone=True), nullable=False)
