# tickets.py
"""
Ticket lifecycle.

States: PENDING -> CONFIRMED -> USED, with CANCELLED reachable from PENDING or
CONFIRMED. Every transition is a single conditional UPDATE on the current
status, so two concurrent requests can never both win the same transition.
"""
import logging

from concurrency import lock_for_update, run_with_retry
from errors import (CapacityExceeded, ConflictAlreadyUsed, InvalidTransition,
                    NotFound, TicketingError, ValidationError)
from events import count_active_tickets
from models import (ACTIVE_TICKET_STATUSES, TICKET_CANCELLED, TICKET_CONFIRMED,
                    TICKET_PENDING, TICKET_USED, Event, ScanLog, Ticket, User,
                    db, isoformat, new_id, utcnow)
from qr import generate_ticket_code, render_qr_image

logger = logging.getLogger(__name__)

TICKET_CODE_ATTEMPTS = 5


class TicketService:

    def __init__(self, codec, notifier, qr_size=300, clock=utcnow):
        self.codec = codec
        self.notifier = notifier
        self.qr_size = qr_size
        self.clock = clock

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def create_ticket(self, event_id, buyer_name, buyer_email, buyer_phone, user_id=None):
        """
        Reserve a seat and issue a signed ticket in PENDING.

        The identifier is allocated before the insert so the payload can be
        signed over it; the row is written once, inside the same transaction
        that checked capacity under a lock on the event row.
        """
        def _op():
            event = db.session.execute(
                lock_for_update(db.select(Event).where(Event.id == event_id))
            ).scalar_one_or_none()
            if event is None:
                raise NotFound('Event not found')
            if not event.is_active:
                raise ValidationError('Event is not open for booking')
            if user_id is not None and db.session.get(User, user_id) is None:
                raise NotFound('User not found')
            if count_active_tickets(event.id) >= event.capacity:
                raise CapacityExceeded('Event is sold out')

            ticket_id = new_id()
            ticket_code = self._unique_ticket_code()
            qr_payload = self.codec.encode(ticket_id, ticket_code)

            ticket = Ticket(
                id=ticket_id,
                event_id=event.id,
                user_id=user_id,
                ticket_code=ticket_code,
                qr_payload=qr_payload,
                qr_image=render_qr_image(qr_payload, self.qr_size),
                status=TICKET_PENDING,
                buyer_name=buyer_name,
                buyer_email=buyer_email,
                buyer_phone=buyer_phone,
            )
            db.session.add(ticket)
            db.session.commit()
            return ticket

        try:
            ticket = run_with_retry(_op)
        except TicketingError:
            db.session.rollback()
            raise
        logger.info('Issued ticket %s (%s) for event %s', ticket.id, ticket.ticket_code, event_id)
        return ticket

    def _unique_ticket_code(self):
        for _ in range(TICKET_CODE_ATTEMPTS):
            code = generate_ticket_code()
            exists = db.session.scalar(db.select(Ticket.id).where(Ticket.ticket_code == code))
            if exists is None:
                return code
        raise RuntimeError('Could not allocate a unique ticket code')

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def _transition(self, ticket_id, from_statuses, **values):
        result = db.session.execute(
            db.update(Ticket)
            .where(Ticket.id == ticket_id, Ticket.status.in_(from_statuses))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def _reload(self, ticket_id):
        ticket = db.session.get(Ticket, ticket_id, populate_existing=True)
        if ticket is None:
            raise NotFound('Ticket not found')
        return ticket

    def confirm_ticket(self, ticket_id):
        """PENDING -> CONFIRMED. Repeat confirmations are a no-op."""
        changed = self._transition(ticket_id, (TICKET_PENDING,),
                                   status=TICKET_CONFIRMED, issued_at=self.clock())
        db.session.commit()
        ticket = self._reload(ticket_id)

        if not changed:
            if ticket.status == TICKET_CONFIRMED:
                return ticket
            raise InvalidTransition(f'Cannot confirm a ticket that is {ticket.status}')

        logger.info('Ticket %s confirmed', ticket_id)
        self.notifier.ticket_confirmed(self.email_details(ticket))
        return ticket

    def mark_ticket_as_used(self, ticket_id):
        """CONFIRMED -> USED, at most once per ticket."""
        now = self.clock()
        if self._transition(ticket_id, (TICKET_CONFIRMED,), status=TICKET_USED, used_at=now):
            ticket = self._reload(ticket_id)
            db.session.add(ScanLog(ticket_id=ticket.id, name=ticket.buyer_name, scanned_at=now))
            db.session.commit()
            logger.info('Ticket %s admitted', ticket_id)
            return ticket

        db.session.rollback()
        ticket = self._reload(ticket_id)
        if ticket.status == TICKET_USED:
            raise ConflictAlreadyUsed('Ticket has already been used', used_at=ticket.used_at)
        raise InvalidTransition(f'Only confirmed tickets can be used (ticket is {ticket.status})')

    def cancel_ticket(self, ticket_id):
        changed = self._transition(ticket_id, ACTIVE_TICKET_STATUSES, status=TICKET_CANCELLED)
        db.session.commit()
        ticket = self._reload(ticket_id)

        if not changed and ticket.status == TICKET_USED:
            raise InvalidTransition('Cannot cancel a ticket that has already been used')
        if changed:
            logger.info('Ticket %s cancelled', ticket_id)
        return ticket

    # ------------------------------------------------------------------
    # Verification
    # ------------------------------------------------------------------

    def verify_ticket(self, qr_payload):
        if isinstance(qr_payload, str):
            qr_payload = qr_payload.strip()
        check = self.codec.decode(qr_payload)
        if not check['valid']:
            return {'valid': False, 'error': check['error']}

        ticket = db.session.scalars(
            db.select(Ticket).where(Ticket.qr_payload == qr_payload)
        ).first()
        if ticket is None:
            return {'valid': False, 'error': 'Ticket not found in system'}

        if ticket.status == TICKET_CANCELLED:
            return {'valid': False, 'error': 'Ticket has been cancelled'}
        if ticket.status == TICKET_USED:
            return {'valid': False, 'error': 'Ticket has already been used',
                    'used_at': isoformat(ticket.used_at)}
        if ticket.status != TICKET_CONFIRMED:
            return {'valid': False, 'error': 'Ticket payment not confirmed'}

        # Same-day entry is always allowed
        event = ticket.event
        if event.date < self.clock().date():
            return {'valid': False, 'error': 'Event has passed'}

        return {
            'valid': True,
            'ticket': {
                'id': ticket.id,
                'code': ticket.ticket_code,
                'buyer_name': ticket.buyer_name,
                'event': {
                    'title': event.title,
                    'date': event.date.isoformat(),
                    'time': event.time,
                    'venue': event.venue,
                },
            },
        }

    def admit_ticket(self, qr_payload):
        """Verify a scanned payload and consume the ticket in one step."""
        result = self.verify_ticket(qr_payload)
        if not result['valid']:
            return result

        try:
            ticket = self.mark_ticket_as_used(result['ticket']['id'])
        except ConflictAlreadyUsed as exc:
            return {'valid': False, 'error': exc.message, 'used_at': isoformat(exc.used_at)}
        except InvalidTransition:
            return {'valid': False, 'error': 'Ticket is no longer valid'}

        result['ticket']['used_at'] = isoformat(ticket.used_at)
        return result

    # ------------------------------------------------------------------
    # Ownership and lookups
    # ------------------------------------------------------------------

    def link_tickets_to_user(self, email, user_id):
        """Attach unowned tickets bought with ``email``; returns how many."""
        if db.session.get(User, user_id) is None:
            raise NotFound('User not found')
        result = db.session.execute(
            db.update(Ticket)
            .where(Ticket.buyer_email == email, Ticket.user_id.is_(None))
            .values(user_id=user_id)
            .execution_options(synchronize_session=False)
        )
        db.session.commit()
        return result.rowcount

    def get_ticket(self, ticket_id):
        ticket = db.session.get(Ticket, ticket_id)
        if ticket is None:
            raise NotFound('Ticket not found')
        return ticket

    def get_ticket_by_code(self, ticket_code):
        ticket = db.session.scalars(
            db.select(Ticket).where(Ticket.ticket_code == ticket_code.upper())
        ).first()
        if ticket is None:
            raise NotFound('Ticket not found')
        return ticket

    def get_user_tickets(self, user_id):
        return db.session.scalars(
            db.select(Ticket).where(Ticket.user_id == user_id).order_by(Ticket.created_at.desc())
        ).all()

    def get_tickets_by_email(self, email):
        return db.session.scalars(
            db.select(Ticket).where(Ticket.buyer_email == email).order_by(Ticket.created_at.desc())
        ).all()

    @staticmethod
    def email_details(ticket):
        event = ticket.event
        return {
            'ticket_id': ticket.id,
            'ticket_code': ticket.ticket_code,
            'buyer_name': ticket.buyer_name,
            'buyer_email': ticket.buyer_email,
            'event_title': event.title,
            'event_date': event.date.strftime('%A, %d %B %Y'),
            'event_time': event.time,
            'event_venue': event.venue,
            'qr_image': ticket.qr_image,
        }
