from datetime import date, datetime, timedelta, timezone

import pytest

import events
from app import create_app
from conftest import make_config, signed_webhook, today
from errors import ConfigurationError
from models import TICKET_CONFIRMED


def buyer(**overrides):
    body = {'buyer_name': 'Ada Dancer', 'buyer_email': 'ada@example.com', 'buyer_phone': '08012345678'}
    body.update(overrides)
    return body


class TestTicketJourney:

    def test_checkout_pay_scan(self, client, event, tickets, admin_headers):
        response = client.post(f'/api/events/{event.id}/checkout', json=buyer())
        assert response.status_code == 201
        data = response.get_json()['data']
        ticket_id = data['ticket']['id']
        assert data['ticket']['status'] == 'PENDING'
        reference = data['payment']['reference']

        response = signed_webhook(client, {'event': 'charge.success', 'data': {'reference': reference}})
        assert response.status_code == 200
        assert response.get_json()['outcome'] == 'confirmed'
        assert tickets.get_ticket(ticket_id).status == TICKET_CONFIRMED

        response = client.get(f'/api/tickets/{ticket_id}')
        payload = response.get_json()['data']['qr_payload']
        assert response.get_json()['data']['payment']['status'] == 'SUCCESS'

        response = client.post('/api/tickets/verify', json={'qr_payload': payload}, headers=admin_headers)
        assert response.status_code == 200
        assert response.get_json()['valid'] is True

        response = client.post('/scan', json={'qr_payload': payload}, headers=admin_headers)
        assert response.status_code == 200
        body = response.get_json()
        assert body['message'] == 'Ticket validated successfully'
        assert body['data']['buyer_name'] == 'Ada Dancer'
        assert body['data']['used_at']

        response = client.post('/scan', json={'qr_payload': payload}, headers=admin_headers)
        assert response.status_code == 400
        body = response.get_json()
        assert body['valid'] is False
        assert body['message'] == 'Ticket has already been used'
        assert body['used_at']

        response = client.put(f'/api/tickets/{ticket_id}/use', headers=admin_headers)
        assert response.status_code == 409
        assert response.get_json()['category'] == 'already_used'

    def test_scan_pending_ticket(self, client, event, admin_headers):
        ticket_id = client.post(f'/api/events/{event.id}/checkout', json=buyer()).get_json()['data']['ticket']['id']
        payload = client.get(f'/api/tickets/{ticket_id}').get_json()['data']['qr_payload']

        response = client.post('/scan', json={'qr_payload': payload}, headers=admin_headers)

        assert response.status_code == 400
        assert response.get_json()['message'] == 'Ticket payment not confirmed'

    def test_scan_garbage(self, client, admin_headers):
        response = client.post('/scan', json={'qr_payload': 'invalid-payload'}, headers=admin_headers)
        assert response.status_code == 400
        assert response.get_json()['message'] == 'Invalid QR code format'

    @pytest.mark.parametrize('path', ['/api/tickets/verify', '/scan'])
    def test_non_string_payload(self, client, admin_headers, path):
        response = client.post(path, json={'qr_payload': 12345}, headers=admin_headers)
        assert response.status_code == 400
        assert response.get_json() == {'status': 'error', 'valid': False, 'message': 'Invalid QR code format'}

    def test_cancel_then_verify(self, client, event, admin_headers):
        ticket_id = client.post(f'/api/events/{event.id}/checkout', json=buyer()).get_json()['data']['ticket']['id']

        response = client.put(f'/api/tickets/{ticket_id}/cancel', headers=admin_headers)
        assert response.status_code == 200
        assert response.get_json()['data']['status'] == 'CANCELLED'

        payload = client.get(f'/api/tickets/{ticket_id}').get_json()['data']['qr_payload']
        response = client.post('/api/tickets/verify', json={'qr_payload': payload}, headers=admin_headers)
        assert response.get_json()['message'] == 'Ticket has been cancelled'

    def test_free_event_checkout(self, client, make_event, mailer):
        free = make_event(price=0)
        response = client.post(f'/api/events/{free.id}/checkout', json=buyer())

        assert response.status_code == 201
        body = response.get_json()
        assert body['data']['ticket']['status'] == 'CONFIRMED'
        assert body['data']['payment'] is None
        assert len(mailer.sent) == 1


class TestCheckoutErrors:

    def test_missing_buyer_fields(self, client, event):
        response = client.post(f'/api/events/{event.id}/checkout', json={'buyer_name': 'Ada'})
        assert response.status_code == 400
        body = response.get_json()
        assert body['category'] == 'validation'
        assert 'buyer_email' in body['message']

    def test_sold_out(self, client, make_event):
        small = make_event(capacity=1)
        assert client.post(f'/api/events/{small.id}/checkout', json=buyer()).status_code == 201

        response = client.post(f'/api/events/{small.id}/checkout', json=buyer(buyer_email='bo@example.com'))

        assert response.status_code == 409
        assert response.get_json() == {
            'status': 'error',
            'category': 'capacity_exceeded',
            'message': 'Event is sold out',
        }

    def test_unknown_event(self, client):
        response = client.post('/api/events/missing/checkout', json=buyer())
        assert response.status_code == 404
        assert response.get_json()['message'] == 'Event not found'

    def test_payment_provider_down(self, client, event, paystack):
        paystack.fail = True
        response = client.post(f'/api/events/{event.id}/checkout', json=buyer())
        assert response.status_code == 502
        assert response.get_json()['category'] == 'upstream_failure'


class TestWebhookEndpoint:

    def test_missing_signature(self, client):
        response = client.post('/webhook/paystack', json={'event': 'charge.success'})
        assert response.status_code == 400
        assert response.get_json()['message'] == 'No Paystack signature found'

    def test_invalid_signature(self, client):
        response = signed_webhook(client, {'event': 'charge.success', 'data': {}}, secret='wrong')
        assert response.status_code == 401
        assert response.get_json()['category'] == 'tamper_detected'

    def test_unmatched_reference_is_acknowledged(self, client):
        response = signed_webhook(client, {'event': 'charge.success', 'data': {'reference': 'TKT-x'}})
        assert response.status_code == 200
        assert response.get_json()['outcome'] == 'unmatched'

    def test_failed_charge(self, client, event):
        reference = client.post(f'/api/events/{event.id}/checkout', json=buyer()).get_json()['data']['payment']['reference']
        response = signed_webhook(client, {'event': 'charge.failed', 'data': {'reference': reference}})
        assert response.get_json()['outcome'] == 'cancelled'


class TestAdminAccess:

    def test_missing_token(self, client):
        response = client.post('/scan', json={'qr_payload': 'x'})
        assert response.status_code == 401
        assert response.get_json()['status'] == 'error'

    def test_wrong_token(self, client):
        response = client.post('/scan', json={'qr_payload': 'x'}, headers={'Authorization': 'Bearer nope'})
        assert response.status_code == 403

    def test_admin_key_unset(self, paystack, mailer):
        app = create_app(make_config(ADMIN_API_KEY=''), paystack_client=paystack, mailer=mailer)
        response = app.test_client().get('/api/tickets/code/ABC', headers={'Authorization': 'Bearer anything'})
        assert response.status_code == 403


class TestEvents:

    def test_create_and_list(self, client, admin_headers):
        body = {
            'title': 'Kizomba Workshop',
            'date': (today() + timedelta(days=3)).isoformat(),
            'time': '18:30',
            'venue': 'Main Hall',
            'capacity': 20,
            'price': 2500,
        }
        response = client.post('/api/events', json=body, headers=admin_headers)
        assert response.status_code == 201
        event = response.get_json()['data']
        assert event['price'] == '2500.00'
        assert event['available_tickets'] == 20

        listed = client.get('/api/events?upcoming=true').get_json()
        assert listed['count'] == 1
        assert listed['data'][0]['id'] == event['id']

    def test_invalid_event(self, client, admin_headers):
        response = client.post('/api/events', json={'title': 'No date'}, headers=admin_headers)
        assert response.status_code == 400
        assert 'Missing required fields' in response.get_json()['message']

        response = client.post('/api/events', json={
            'title': 'Bad', 'date': '2026-12-01', 'time': '19:00', 'venue': 'A', 'capacity': 0, 'price': 1,
        }, headers=admin_headers)
        assert response.status_code == 400

    def test_update_event(self, client, event, admin_headers):
        response = client.put(f'/api/events/{event.id}', json={'venue': 'Studio B'}, headers=admin_headers)
        assert response.status_code == 200
        assert response.get_json()['data']['venue'] == 'Studio B'

    def test_sold_counts(self, client, event):
        client.post(f'/api/events/{event.id}/checkout', json=buyer())
        data = client.get(f'/api/events/{event.id}').get_json()['data']
        assert data['sold_tickets'] == 1
        assert data['available_tickets'] == 49

    def test_delete_guard(self, client, event, admin_headers):
        ticket_id = client.post(f'/api/events/{event.id}/checkout', json=buyer()).get_json()['data']['ticket']['id']

        response = client.delete(f'/api/events/{event.id}', headers=admin_headers)
        assert response.status_code == 400
        assert 'Cancel tickets first' in response.get_json()['message']

        client.put(f'/api/tickets/{ticket_id}/cancel', headers=admin_headers)
        assert client.delete(f'/api/events/{event.id}', headers=admin_headers).status_code == 200
        assert client.get(f'/api/events/{event.id}').status_code == 404

    def test_event_tickets(self, client, event, admin_headers):
        client.post(f'/api/events/{event.id}/checkout', json=buyer())
        response = client.get(f'/api/events/{event.id}/tickets', headers=admin_headers)
        assert response.get_json()['count'] == 1

    def test_upcoming_uses_the_utc_date(self, client, make_event, monkeypatch):
        just_after_midnight = datetime(2031, 1, 1, 0, 30, tzinfo=timezone.utc)
        monkeypatch.setattr(events, 'utcnow', lambda: just_after_midnight)
        make_event(title='New Year Eve Ball', date=date(2030, 12, 31))
        make_event(title='New Year Brunch', date=date(2031, 1, 1))

        listed = client.get('/api/events?upcoming=true').get_json()

        assert [item['title'] for item in listed['data']] == ['New Year Brunch']


def test_api_docs_are_served(client):
    spec = client.get('/apispec.json').get_json()
    assert spec['info']['title'] == 'Dance School Ticketing API'
    assert '/scan' in spec['paths']
    assert client.get('/docs').status_code in (200, 308)


class TestLookups:

    def test_ticket_by_code_and_email(self, client, event, admin_headers):
        ticket = client.post(f'/api/events/{event.id}/checkout', json=buyer()).get_json()['data']['ticket']

        response = client.get(f"/api/tickets/code/{ticket['code'].lower()}", headers=admin_headers)
        assert response.get_json()['data']['id'] == ticket['id']

        response = client.get('/api/tickets?email=ada@example.com', headers=admin_headers)
        assert response.get_json()['count'] == 1

        assert client.get('/api/tickets', headers=admin_headers).status_code == 400

    def test_link_and_user_tickets(self, client, event, user, admin_headers):
        client.post(f'/api/events/{event.id}/checkout', json=buyer())

        response = client.post('/api/tickets/link', json={'email': 'ada@example.com', 'user_id': user.id},
                               headers=admin_headers)
        assert response.get_json()['data']['count'] == 1

        response = client.get(f'/api/users/{user.id}/tickets', headers=admin_headers)
        assert response.get_json()['count'] == 1

    def test_payment_logs(self, client, event, admin_headers):
        reference = client.post(f'/api/events/{event.id}/checkout', json=buyer()).get_json()['data']['payment']['reference']

        logs = client.get('/api/payments?status=PENDING', headers=admin_headers).get_json()
        assert logs['count'] == 1
        payment_id = logs['data'][0]['id']

        response = client.get(f'/api/payments/{payment_id}', headers=admin_headers)
        assert response.get_json()['data']['reference'] == reference

        response = client.post(f'/api/payments/{reference}/refund', json={'amount': 100}, headers=admin_headers)
        assert response.status_code == 200

        assert client.get('/api/payments?start_date=yesterday', headers=admin_headers).status_code == 400

    def test_verify_payment(self, client):
        response = client.get('/api/payments/verify/TKT-1')
        assert response.get_json()['data']['status'] == 'success'

    def test_unknown_ticket_and_route(self, client):
        assert client.get('/api/tickets/missing').get_json() == {
            'status': 'error', 'category': 'not_found', 'message': 'Ticket not found',
        }
        response = client.get('/nowhere')
        assert response.status_code == 404
        assert response.get_json()['status'] == 'error'


def test_short_signing_secret_is_fatal():
    with pytest.raises(ConfigurationError):
        create_app(make_config(TICKET_SIGNING_SECRET='too-short'))


def test_webhook_secret_falls_back_to_paystack_key(paystack, mailer):
    app = create_app(make_config(PAYSTACK_WEBHOOK_SECRET=''), paystack_client=paystack, mailer=mailer)
    assert app.config['PAYSTACK_WEBHOOK_SECRET'] == 'sk_test_secret'
