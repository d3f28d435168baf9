# events.py
"""Event catalogue: the capacity side of ticket sales."""
from datetime import date
from decimal import Decimal, InvalidOperation

from errors import NotFound, ValidationError
from models import ACTIVE_TICKET_STATUSES, Event, Ticket, db, utcnow

EDITABLE_FIELDS = ('title', 'description', 'date', 'time', 'venue', 'capacity', 'price', 'image_url', 'is_active')


def count_active_tickets(event_id):
    """Tickets holding a seat: PENDING plus CONFIRMED."""
    return db.session.scalar(
        db.select(db.func.count(Ticket.id)).where(
            Ticket.event_id == event_id,
            Ticket.status.in_(ACTIVE_TICKET_STATUSES),
        )
    )


def _clean(data, partial=False):
    cleaned = {}
    for field in EDITABLE_FIELDS:
        if field in data:
            cleaned[field] = data[field]

    if not partial:
        missing = [f for f in ('title', 'date', 'time', 'venue', 'capacity', 'price') if cleaned.get(f) in (None, '')]
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    if 'date' in cleaned and not isinstance(cleaned['date'], date):
        try:
            cleaned['date'] = date.fromisoformat(str(cleaned['date'])[:10])
        except ValueError:
            raise ValidationError('date must be an ISO date (YYYY-MM-DD)')

    if 'capacity' in cleaned:
        capacity = cleaned['capacity']
        if isinstance(capacity, bool) or not isinstance(capacity, int) or capacity <= 0:
            raise ValidationError('capacity must be a positive integer')

    if 'price' in cleaned:
        try:
            price = Decimal(str(cleaned['price']))
        except InvalidOperation:
            raise ValidationError('price must be a number')
        if price < 0:
            raise ValidationError('price cannot be negative')
        cleaned['price'] = price

    return cleaned


def create_event(data):
    event = Event(**_clean(data))
    db.session.add(event)
    db.session.commit()
    return event


def get_event(event_id):
    event = db.session.get(Event, event_id)
    if event is None:
        raise NotFound('Event not found')
    return event


def event_with_counts(event):
    return event.to_dict(sold_tickets=count_active_tickets(event.id))


def list_events(active=None, upcoming=False):
    query = db.select(Event).order_by(Event.date.asc())
    if active is not None:
        query = query.where(Event.is_active.is_(active))
    if upcoming:
        query = query.where(Event.date >= utcnow().date())
    return db.session.scalars(query).all()


def update_event(event_id, data):
    event = get_event(event_id)
    for field, value in _clean(data, partial=True).items():
        setattr(event, field, value)
    db.session.commit()
    return event


def delete_event(event_id):
    event = get_event(event_id)
    if count_active_tickets(event_id) > 0:
        raise ValidationError('Cannot delete event with confirmed tickets. Cancel tickets first.')
    db.session.delete(event)
    db.session.commit()


def get_event_tickets(event_id):
    get_event(event_id)
    return db.session.scalars(
        db.select(Ticket).where(Ticket.event_id == event_id).order_by(Ticket.created_at.desc())
    ).all()
