# config.py
import os

from errors import ConfigurationError

MIN_SIGNING_SECRET_LENGTH = 32


def _env_bool(name, default):
    return os.environ.get(name, default).lower() in ('1', 'true', 'yes')


class Config:
    SECRET_KEY = os.environ.get('SECRET_KEY', 'dev-secret-key-change-me')

    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL', 'sqlite:///database.db')
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Ticket signing
    TICKET_SIGNING_SECRET = os.environ.get('TICKET_SIGNING_SECRET', '')
    QR_MAX_AGE_HOURS = int(os.environ.get('QR_MAX_AGE_HOURS', '24'))
    TICKET_QR_SIZE = int(os.environ.get('TICKET_QR_SIZE', '300'))

    # Paystack
    PAYSTACK_SECRET_KEY = os.environ.get('PAYSTACK_SECRET_KEY', '')
    PAYSTACK_WEBHOOK_SECRET = os.environ.get('PAYSTACK_WEBHOOK_SECRET', '')
    PAYSTACK_BASE_URL = os.environ.get('PAYSTACK_BASE_URL', 'https://api.paystack.co')
    PAYSTACK_CURRENCY = os.environ.get('PAYSTACK_CURRENCY', 'NGN')

    # Brevo transactional email
    BREVO_API_KEY = os.environ.get('BREVO_API_KEY', '')
    EMAIL_FROM = os.environ.get('EMAIL_FROM', 'tickets@danceschool.example')
    EMAIL_FROM_NAME = os.environ.get('EMAIL_FROM_NAME', 'Dance School')
    NOTIFY_ASYNC = _env_bool('NOTIFY_ASYNC', 'true')

    FRONTEND_URL = os.environ.get('FRONTEND_URL', 'http://localhost:3000')
    ADMIN_API_KEY = os.environ.get('ADMIN_API_KEY', '')
    HTTP_TIMEOUT = float(os.environ.get('HTTP_TIMEOUT', '10'))
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')


def validate_config(config):
    """Fail fast on settings the ticket lifecycle cannot run without."""
    secret = config.get('TICKET_SIGNING_SECRET') or ''
    if len(secret) < MIN_SIGNING_SECRET_LENGTH:
        raise ConfigurationError(
            f'TICKET_SIGNING_SECRET must be at least {MIN_SIGNING_SECRET_LENGTH} characters'
        )

    if not config.get('PAYSTACK_WEBHOOK_SECRET'):
        # Paystack signs webhooks with the account secret key
        config['PAYSTACK_WEBHOOK_SECRET'] = config.get('PAYSTACK_SECRET_KEY') or ''
    if not config['PAYSTACK_WEBHOOK_SECRET']:
        raise ConfigurationError('PAYSTACK_SECRET_KEY or PAYSTACK_WEBHOOK_SECRET must be set')
