# qr.py
import base64
import binascii
import json
import logging
import re
import secrets
import time
from datetime import timedelta
from io import BytesIO

import qrcode
from qrcode.constants import ERROR_CORRECT_H

logger = logging.getLogger(__name__)

TICKET_CODE_PATTERN = re.compile(r'^[A-F0-9]{12}$')

INVALID_FORMAT = 'Invalid QR code format'
EXPIRED = 'QR code expired'
INVALID_SIGNATURE = 'Invalid QR code signature'

_PAYLOAD_FIELDS = {'ticketId': str, 'ticketCode': str, 'timestamp': int, 'signature': str}


def generate_ticket_code():
    """Short printable code for manual lookup: 12 upper-case hex characters."""
    return secrets.token_bytes(6).hex().upper()


class QRPayloadCodec:
    """Builds and checks the signed, base64 encoded payload printed on tickets.

    Payload text is ``base64(json({ticketId, ticketCode, timestamp, signature}))``
    with ``timestamp`` in epoch milliseconds. A payload is only accepted for
    ``max_age`` after it was generated, independent of the event date.
    """

    def __init__(self, signer, max_age=timedelta(hours=24), clock=time.time):
        self.signer = signer
        self.max_age = max_age
        self.clock = clock

    def _now_ms(self):
        return int(self.clock() * 1000)

    def encode(self, ticket_id, ticket_code):
        timestamp = self._now_ms()
        record = {
            'ticketId': ticket_id,
            'ticketCode': ticket_code,
            'timestamp': timestamp,
            'signature': self.signer.sign(ticket_id, ticket_code, timestamp),
        }
        data = json.dumps(record, separators=(',', ':'))
        return base64.b64encode(data.encode('utf-8')).decode('ascii')

    def decode(self, payload):
        record = self._parse(payload)
        if record is None:
            return {'valid': False, 'error': INVALID_FORMAT}

        max_age_ms = int(self.max_age.total_seconds() * 1000)
        if self._now_ms() - record['timestamp'] > max_age_ms:
            return {'valid': False, 'error': EXPIRED}

        if not self.signer.verify(record['ticketId'], record['ticketCode'],
                                  record['timestamp'], record['signature']):
            logger.warning('Rejected QR payload with bad signature for ticket %r', record['ticketId'])
            return {'valid': False, 'error': INVALID_SIGNATURE}

        return {'valid': True, 'ticket_id': record['ticketId'], 'ticket_code': record['ticketCode']}

    @staticmethod
    def _parse(payload):
        if not isinstance(payload, str) or not payload:
            return None
        try:
            raw = base64.b64decode(payload, validate=True)
            # Reject alternative spellings of the same bytes
            if base64.b64encode(raw).decode('ascii') != payload:
                return None
            record = json.loads(raw.decode('utf-8'))
        except (binascii.Error, ValueError):
            return None

        if not isinstance(record, dict):
            return None
        for field, field_type in _PAYLOAD_FIELDS.items():
            value = record.get(field)
            if not isinstance(value, field_type) or isinstance(value, bool):
                return None
        return record


def render_qr_image(payload, size=300):
    """Render the payload as a PNG data URL with high error correction."""
    qr = qrcode.QRCode(error_correction=ERROR_CORRECT_H, border=2)
    qr.add_data(payload)
    qr.make(fit=True)
    qr.box_size = max(1, size // (qr.modules_count + 2 * qr.border))

    img = qr.make_image(fill_color='black', back_color='white')
    buffered = BytesIO()
    img.save(buffered, format='PNG')
    encoded = base64.b64encode(buffered.getvalue()).decode('ascii')
    return f'data:image/png;base64,{encoded}'
