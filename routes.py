# routes.py
import hmac
from datetime import datetime
from functools import wraps

from flasgger import swag_from
from flask import Blueprint, abort, current_app, jsonify, request

import events
from errors import ValidationError, WebhookSignatureError
from payments import verify_webhook_signature

api = Blueprint('api', __name__)


def services():
    return current_app.extensions['ticketing']


def verify_paystack_webhook(f):
    @wraps(f)
    def decorated_function(*args, **kwargs):
        paystack_signature = request.headers.get('x-paystack-signature')
        if not paystack_signature:
            abort(400, description='No Paystack signature found')

        payload = request.get_data()
        secret = current_app.config['PAYSTACK_WEBHOOK_SECRET']
        if not verify_webhook_signature(secret, payload, paystack_signature):
            current_app.logger.warning('Rejected webhook with invalid signature from %s', request.remote_addr)
            raise WebhookSignatureError('Invalid webhook signature')

        return f(*args, **kwargs)
    return decorated_function


def require_admin(f):
    @wraps(f)
    def decorated_function(*args, **kwargs):
        header = request.headers.get('Authorization', '')
        if not header.startswith('Bearer '):
            abort(401, description='Authentication required')

        expected = current_app.config.get('ADMIN_API_KEY') or ''
        token = header[len('Bearer '):].strip()
        if not expected or not hmac.compare_digest(token.encode('utf-8'), expected.encode('utf-8')):
            abort(403, description='Admin access required')

        return f(*args, **kwargs)
    return decorated_function


def json_body(*required):
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError('Request body must be a JSON object')
    missing = [field for field in required if not data.get(field)]
    if missing:
        raise ValidationError(f"{', '.join(missing)} required")
    return data


def parse_datetime_arg(name):
    value = request.args.get(name)
    if not value:
        return None
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        raise ValidationError(f'{name} must be an ISO date or datetime')


TICKET_RESPONSE = {
    'type': 'object',
    'properties': {
        'status': {'type': 'string'},
        'data': {'type': 'object'},
    }
}


# =============================================================================
# EVENTS
# =============================================================================

@api.get('/api/events')
@swag_from({
    'tags': ['Events'],
    'description': 'List events with sold and available ticket counts',
    'parameters': [
        {'name': 'active', 'in': 'query', 'type': 'boolean', 'required': False},
        {'name': 'upcoming', 'in': 'query', 'type': 'boolean', 'required': False},
    ],
    'responses': {'200': {'description': 'Events list'}}
})
def list_events():
    active = request.args.get('active')
    if active is not None:
        active = active.lower() == 'true'
    upcoming = request.args.get('upcoming', 'false').lower() == 'true'

    data = [events.event_with_counts(event) for event in events.list_events(active=active, upcoming=upcoming)]
    return jsonify({'status': 'success', 'data': data, 'count': len(data)})


@api.get('/api/events/<event_id>')
def get_event(event_id):
    event = events.get_event(event_id)
    return jsonify({'status': 'success', 'data': events.event_with_counts(event)})


@api.post('/api/events')
@require_admin
@swag_from({
    'tags': ['Events'],
    'description': 'Create an event',
    'parameters': [
        {
            'name': 'body',
            'in': 'body',
            'required': True,
            'schema': {
                'type': 'object',
                'properties': {
                    'title': {'type': 'string'},
                    'description': {'type': 'string'},
                    'date': {'type': 'string', 'example': '2026-12-05'},
                    'time': {'type': 'string', 'example': '19:00'},
                    'venue': {'type': 'string'},
                    'capacity': {'type': 'integer'},
                    'price': {'type': 'number'},
                    'image_url': {'type': 'string'},
                }
            }
        }
    ],
    'responses': {'201': {'description': 'Event created'}, '400': {'description': 'Invalid event'}}
})
def create_event():
    event = events.create_event(json_body())
    return jsonify({'status': 'success', 'data': events.event_with_counts(event)}), 201


@api.put('/api/events/<event_id>')
@require_admin
def update_event(event_id):
    event = events.update_event(event_id, json_body())
    return jsonify({'status': 'success', 'data': events.event_with_counts(event)})


@api.delete('/api/events/<event_id>')
@require_admin
def delete_event(event_id):
    events.delete_event(event_id)
    return jsonify({'status': 'success', 'message': 'Event deleted successfully'})


@api.get('/api/events/<event_id>/tickets')
@require_admin
def get_event_tickets(event_id):
    tickets = events.get_event_tickets(event_id)
    data = [ticket.to_dict(include_event=False) for ticket in tickets]
    return jsonify({'status': 'success', 'data': data, 'count': len(data)})


@api.post('/api/events/<event_id>/checkout')
@swag_from({
    'tags': ['Tickets'],
    'description': 'Reserve a ticket and start a Paystack payment for it',
    'parameters': [
        {'name': 'event_id', 'in': 'path', 'type': 'string', 'required': True},
        {
            'name': 'body',
            'in': 'body',
            'required': True,
            'schema': {
                'type': 'object',
                'properties': {
                    'buyer_name': {'type': 'string'},
                    'buyer_email': {'type': 'string'},
                    'buyer_phone': {'type': 'string'},
                    'user_id': {'type': 'string'},
                }
            }
        }
    ],
    'responses': {
        '201': {'description': 'Ticket reserved, payment initialised'},
        '404': {'description': 'Event not found'},
        '409': {'description': 'Event is sold out'},
        '502': {'description': 'Payment provider unavailable'}
    }
})
def checkout(event_id):
    data = json_body('buyer_name', 'buyer_email', 'buyer_phone')
    ticket, payment = services().payments.checkout(
        event_id,
        buyer_name=data['buyer_name'],
        buyer_email=data['buyer_email'],
        buyer_phone=data['buyer_phone'],
        user_id=data.get('user_id'),
    )

    message = 'Checkout initiated. Please complete payment.' if payment else 'Ticket confirmed.'
    return jsonify({
        'status': 'success',
        'message': message,
        'data': {
            'ticket': {'id': ticket.id, 'code': ticket.ticket_code, 'status': ticket.status},
            'payment': payment,
        }
    }), 201


# =============================================================================
# TICKETS
# =============================================================================

@api.get('/api/tickets/<ticket_id>')
def get_ticket(ticket_id):
    ticket = services().tickets.get_ticket(ticket_id)
    return jsonify({'status': 'success', 'data': ticket.to_dict()})


@api.get('/api/tickets')
@require_admin
def get_tickets_by_email():
    email = request.args.get('email')
    if not email:
        raise ValidationError('email query parameter required')
    data = [ticket.to_dict() for ticket in services().tickets.get_tickets_by_email(email)]
    return jsonify({'status': 'success', 'data': data, 'count': len(data)})


@api.get('/api/tickets/code/<ticket_code>')
@require_admin
def get_ticket_by_code(ticket_code):
    ticket = services().tickets.get_ticket_by_code(ticket_code)
    return jsonify({'status': 'success', 'data': ticket.to_dict()})


@api.get('/api/users/<user_id>/tickets')
@require_admin
def get_user_tickets(user_id):
    data = [ticket.to_dict() for ticket in services().tickets.get_user_tickets(user_id)]
    return jsonify({'status': 'success', 'data': data, 'count': len(data)})


def _verification_response(result, message):
    if not result['valid']:
        body = {'status': 'error', 'valid': False, 'message': result['error']}
        if 'used_at' in result:
            body['used_at'] = result['used_at']
        return jsonify(body), 400
    return jsonify({'status': 'success', 'valid': True, 'message': message, 'data': result['ticket']})


@api.post('/api/tickets/verify')
@require_admin
@swag_from({
    'tags': ['Tickets'],
    'description': 'Check a scanned QR payload without consuming the ticket',
    'parameters': [
        {
            'name': 'body',
            'in': 'body',
            'required': True,
            'schema': {'type': 'object', 'properties': {'qr_payload': {'type': 'string'}}}
        }
    ],
    'responses': {
        '200': {'description': 'Ticket is valid', 'schema': TICKET_RESPONSE},
        '400': {'description': 'Ticket is invalid, expired, cancelled or already used'}
    }
})
def verify_ticket():
    data = json_body('qr_payload')
    result = services().tickets.verify_ticket(data['qr_payload'])
    return _verification_response(result, 'Ticket is valid')


@api.post('/scan')
@require_admin
@swag_from({
    'tags': ['Tickets'],
    'description': 'Validate a scanned QR payload and admit the holder exactly once',
    'parameters': [
        {
            'name': 'body',
            'in': 'body',
            'required': True,
            'schema': {'type': 'object', 'properties': {'qr_payload': {'type': 'string'}}}
        }
    ],
    'responses': {
        '200': {'description': 'Ticket validated successfully', 'schema': TICKET_RESPONSE},
        '400': {'description': 'Invalid ticket or already scanned'}
    }
})
def scan_qr():
    data = json_body('qr_payload')
    result = services().tickets.admit_ticket(data['qr_payload'])
    return _verification_response(result, 'Ticket validated successfully')


@api.put('/api/tickets/<ticket_id>/use')
@require_admin
def mark_ticket_as_used(ticket_id):
    ticket = services().tickets.mark_ticket_as_used(ticket_id)
    return jsonify({'status': 'success', 'message': 'Ticket marked as used', 'data': ticket.to_dict()})


@api.put('/api/tickets/<ticket_id>/cancel')
@require_admin
def cancel_ticket(ticket_id):
    ticket = services().tickets.cancel_ticket(ticket_id)
    return jsonify({'status': 'success', 'message': 'Ticket cancelled successfully', 'data': ticket.to_dict()})


@api.post('/api/tickets/link')
@require_admin
def link_tickets_to_user():
    data = json_body('email', 'user_id')
    count = services().tickets.link_tickets_to_user(data['email'], data['user_id'])
    return jsonify({
        'status': 'success',
        'message': f'Successfully linked {count} tickets to user account',
        'data': {'count': count},
    })


# =============================================================================
# PAYMENTS
# =============================================================================

@api.post('/webhook/paystack')
@verify_paystack_webhook
@swag_from({
    'tags': ['Webhooks'],
    'description': 'Handle Paystack payment webhook events',
    'parameters': [
        {
            'name': 'x-paystack-signature',
            'in': 'header',
            'type': 'string',
            'required': True,
            'description': 'HMAC-SHA512 of the raw body'
        },
        {
            'name': 'body',
            'in': 'body',
            'required': True,
            'schema': {
                'type': 'object',
                'properties': {
                    'event': {'type': 'string', 'example': 'charge.success'},
                    'data': {
                        'type': 'object',
                        'properties': {
                            'reference': {'type': 'string'},
                            'amount': {'type': 'integer'},
                            'paid_at': {'type': 'string'},
                            'channel': {'type': 'string'}
                        }
                    }
                }
            }
        }
    ],
    'responses': {
        '200': {'description': 'Webhook processed'},
        '400': {'description': 'Missing signature or payload'},
        '401': {'description': 'Invalid webhook signature'}
    }
})
def paystack_webhook():
    event = request.get_json(silent=True)
    if not isinstance(event, dict):
        abort(400, description='Invalid webhook payload')

    outcome = services().payments.handle_webhook(event)
    return jsonify({'status': 'success', 'message': 'Webhook processed', 'outcome': outcome}), 200


@api.get('/api/payments/verify/<reference>')
def verify_payment(reference):
    data = services().payments.verify_payment(reference)
    return jsonify({'status': 'success', 'data': data})


@api.get('/api/payments')
@require_admin
def get_payment_logs():
    payments = services().payments.list_payment_logs(
        status=request.args.get('status'),
        ticket_id=request.args.get('ticket_id'),
        start_date=parse_datetime_arg('start_date'),
        end_date=parse_datetime_arg('end_date'),
    )
    data = [payment.to_dict() for payment in payments]
    return jsonify({'status': 'success', 'data': data, 'count': len(data)})


@api.get('/api/payments/<payment_id>')
@require_admin
def get_payment_log(payment_id):
    payment = services().payments.get_payment_log(payment_id)
    return jsonify({'status': 'success', 'data': payment.to_dict()})


@api.post('/api/payments/<reference>/refund')
@require_admin
def initiate_refund(reference):
    data = request.get_json(silent=True) or {}
    result = services().payments.initiate_refund(reference, data.get('amount'))
    return jsonify({'status': 'success', 'message': 'Refund initiated successfully', 'data': result})
