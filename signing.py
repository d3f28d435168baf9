# signing.py
import hashlib
import hmac

from errors import ConfigurationError


class TicketSigner:
    """Keyed HMAC-SHA256 signatures binding a ticket to its issue time.

    The signature is recomputed at verification time rather than stored, so
    ``sign`` must stay deterministic for a given secret.
    """

    def __init__(self, secret):
        if not secret:
            raise ConfigurationError('Ticket signing secret is not configured')
        self._key = secret.encode('utf-8')

    def sign(self, ticket_id, ticket_code, timestamp):
        message = f'{ticket_id}:{ticket_code}:{timestamp}'
        return hmac.new(self._key, message.encode('utf-8'), hashlib.sha256).hexdigest()

    def verify(self, ticket_id, ticket_code, timestamp, signature):
        expected = self.sign(ticket_id, ticket_code, timestamp)
        return hmac.compare_digest(expected.encode('utf-8'), signature.encode('utf-8'))
