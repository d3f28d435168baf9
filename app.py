# app.py
import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta
from types import SimpleNamespace

from flasgger import Swagger
from flask import Flask, jsonify
from werkzeug.exceptions import HTTPException

from config import Config, validate_config
from errors import TicketingError
from models import db
from notifications import BrevoMailer, TicketNotifier
from payments import PaymentService, PaystackClient
from qr import QRPayloadCodec
from routes import api
from signing import TicketSigner
from tickets import TicketService

# Merged over flasgger's defaults
swagger_config = {
    "specs": [{"endpoint": 'apispec', "route": '/apispec.json'}],
    "specs_route": "/docs",
}

swagger_template = {
    "swagger": "2.0",
    "info": {
        "title": "Dance School Ticketing API",
        "description": "Event tickets with signed QR codes and Paystack payments",
        "version": "1.0.0",
    },
    "schemes": ["http", "https"],
    "securityDefinitions": {
        "AdminKey": {
            "type": "apiKey",
            "name": "Authorization",
            "in": "header",
            "description": "Bearer <ADMIN_API_KEY>"
        },
        "PaystackSignature": {
            "type": "apiKey",
            "name": "x-paystack-signature",
            "in": "header",
            "description": "Paystack webhook signature for request verification"
        }
    }
}


def configure_logging(app):
    level = app.config['LOG_LEVEL']
    logging.basicConfig(
        level=level,
        format='%(asctime)s %(levelname)s [%(name)s] %(message)s',
    )
    app.logger.setLevel(level)


def register_error_handlers(app):
    @app.errorhandler(TicketingError)
    def handle_ticketing_error(error):
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(HTTPException)
    def handle_http_error(error):
        return jsonify({'status': 'error', 'message': error.description}), error.code

    @app.errorhandler(Exception)
    def handle_unexpected_error(error):
        app.logger.exception('Unexpected error: %s', error)
        db.session.rollback()
        return jsonify({'status': 'error', 'message': 'Internal server error'}), 500


def build_services(app, paystack_client=None, mailer=None):
    config = app.config

    codec = QRPayloadCodec(
        TicketSigner(config['TICKET_SIGNING_SECRET']),
        max_age=timedelta(hours=config['QR_MAX_AGE_HOURS']),
    )

    if mailer is None:
        mailer = BrevoMailer(
            config['BREVO_API_KEY'],
            sender_email=config['EMAIL_FROM'],
            sender_name=config['EMAIL_FROM_NAME'],
            timeout=config['HTTP_TIMEOUT'],
        )
        if not config['BREVO_API_KEY']:
            app.logger.warning('BREVO_API_KEY is not set; ticket emails will not be delivered')

    executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix='notify') if config['NOTIFY_ASYNC'] else None
    notifier = TicketNotifier(mailer, config['FRONTEND_URL'], executor=executor)

    tickets = TicketService(codec, notifier, qr_size=config['TICKET_QR_SIZE'])

    if paystack_client is None:
        paystack_client = PaystackClient(
            config['PAYSTACK_SECRET_KEY'],
            base_url=config['PAYSTACK_BASE_URL'],
            timeout=config['HTTP_TIMEOUT'],
        )
    payments = PaymentService(
        paystack_client,
        tickets,
        notifier,
        callback_url=f"{config['FRONTEND_URL'].rstrip('/')}/payment/callback",
        currency=config['PAYSTACK_CURRENCY'],
    )

    return SimpleNamespace(codec=codec, notifier=notifier, tickets=tickets, payments=payments)


def create_app(test_config=None, paystack_client=None, mailer=None):
    app = Flask(__name__)
    app.config.from_object(Config)
    if test_config:
        app.config.update(test_config)

    validate_config(app.config)
    configure_logging(app)

    db.init_app(app)
    app.extensions['ticketing'] = build_services(app, paystack_client=paystack_client, mailer=mailer)

    Swagger(app, config=swagger_config, template=swagger_template, merge=True)
    app.register_blueprint(api)
    register_error_handlers(app)

    return app


if __name__ == '__main__':
    app = create_app()
    with app.app_context():
        db.create_all()
    app.run()
