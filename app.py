# app.py
from flask import Flask, current_app, request, jsonify, abort, send_from_directory
import hmac
import logging
from functools import wraps
from flasgger import Swagger, swag_from

import checkin
import payments
import registrations
from config import Config
from errors import TicketingError, InvalidAmount, InvalidRegistration, MissingEvidence
from models import db

logger = logging.getLogger(__name__)

# Swagger Configuration
swagger_config = {
    "headers": [],
    "specs": [
        {
            "endpoint": 'apispec',
            "route": '/apispec.json',
            "rule_filter": lambda rule: True,
            "model_filter": lambda tag: True,
        }
    ],
    "static_url_path": "/flasgger_static",
    "swagger_ui": True,
    "specs_route": "/docs"
}

swagger_template = {
    "swagger": "2.0",
    "info": {
        "title": "Event Registration & Check-In API",
        "description": "Self-registration, cash/transfer payments, ticket issuance and door check-in",
        "version": "1.0.0"
    },
    "schemes": ["http", "https"],
    "securityDefinitions": {
        "StaffPin": {
            "type": "apiKey",
            "name": "X-Staff-Pin",
            "in": "header",
            "description": "PIN shared with event staff"
        }
    }
}

STAFF_PIN_PARAM = {
    'name': 'X-Staff-Pin',
    'in': 'header',
    'type': 'string',
    'required': True,
    'description': 'Staff PIN'
}

ERROR_SCHEMA = {
    'type': 'object',
    'properties': {
        'status': {'type': 'string', 'example': 'error'},
        'error': {'type': 'string'},
        'message': {'type': 'string'}
    }
}


def _pin_matches(pin):
    expected = current_app.config['STAFF_PIN']
    return bool(pin) and hmac.compare_digest(pin.encode('utf-8'), expected.encode('utf-8'))


def staff_required(f):
    @wraps(f)
    def decorated_function(*args, **kwargs):
        pin = request.headers.get('X-Staff-Pin')
        if not pin:
            abort(401, description='No staff PIN provided')
        if not _pin_matches(pin):
            logger.warning('Rejected staff PIN from %s on %s', request.remote_addr, request.path)
            abort(403, description='Invalid Staff PIN')
        return f(*args, **kwargs)
    return decorated_function


def _json_body():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise InvalidRegistration('Request body must be a JSON object')
    return data


def _int_field(data, key, error=InvalidAmount):
    value = data.get(key)
    if value is None:
        return None
    if isinstance(value, bool) or (isinstance(value, float) and not value.is_integer()):
        raise error(f'{key} must be a whole number')
    try:
        return int(value)
    except (TypeError, ValueError):
        raise error(f'{key} must be a whole number') from None


def _attendees(items):
    if items is None:
        return []
    if not isinstance(items, list) or not all(isinstance(a, dict) for a in items):
        raise InvalidRegistration('attendees must be a list of objects')
    return [{'name': a.get('name'), 'meal_choice': a.get('mealChoice')} for a in items]


def _approver(data):
    return (data.get('approver') or '').strip() or 'admin'


def create_app(test_config=None):
    app = Flask(__name__)
    app.config.from_object(Config)
    if test_config:
        app.config.update(test_config)

    logging.basicConfig(
        level=app.config['LOG_LEVEL'],
        format='%(asctime)s %(levelname)s %(name)s: %(message)s'
    )

    Swagger(app, config=swagger_config, template=swagger_template)
    db.init_app(app)

    @app.errorhandler(TicketingError)
    def handle_ticketing_error(error):
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(401)
    @app.errorhandler(403)
    @app.errorhandler(404)
    def handle_http_error(error):
        return jsonify({'status': 'error', 'message': error.description}), error.code

    @app.route('/register', methods=['POST'])
    @swag_from({
        'tags': ['Registrations'],
        'description': 'Register an attendee and record the first payment',
        'parameters': [
            {
                'name': 'X-Staff-Pin',
                'in': 'header',
                'type': 'string',
                'required': False,
                'description': 'Required when paying cash'
            },
            {
                'name': 'body',
                'in': 'body',
                'required': True,
                'schema': {
                    'type': 'object',
                    'properties': {
                        'name': {'type': 'string'},
                        'phone': {'type': 'string'},
                        'email': {'type': 'string'},
                        'church': {'type': 'string'},
                        'zone': {'type': 'string', 'example': 'Akoka'},
                        'mealChoice': {'type': 'string', 'example': 'semo-egusi'},
                        'ticketType': {'type': 'string', 'enum': ['solo', 'guest', 'group']},
                        'guestName': {'type': 'string'},
                        'groupSize': {'type': 'integer'},
                        'attendees': {
                            'type': 'array',
                            'items': {
                                'type': 'object',
                                'properties': {
                                    'name': {'type': 'string'},
                                    'mealChoice': {'type': 'string'}
                                }
                            }
                        },
                        'payment': {
                            'type': 'object',
                            'properties': {
                                'method': {'type': 'string', 'enum': ['cash', 'transfer']},
                                'amount': {'type': 'integer'},
                                'receiverName': {'type': 'string'},
                                'transactionRef': {'type': 'string'},
                                'receiptImage': {'type': 'string'}
                            }
                        }
                    }
                }
            }
        ],
        'responses': {
            '201': {'description': 'Registration created'},
            '400': {'description': 'Invalid registration or payment', 'schema': ERROR_SCHEMA},
            '403': {'description': 'Invalid staff PIN for a cash payment'}
        }
    })
    def register():
        data = _json_body()
        payment = data.get('payment') or None
        if payment is not None:
            if not isinstance(payment, dict):
                raise MissingEvidence('Payment details must be an object')
            if payment.get('method') == 'cash' and not _pin_matches(request.headers.get('X-Staff-Pin')):
                abort(403, description='Invalid Staff PIN')
            payment = {
                'method': payment.get('method'),
                'amount': _int_field(payment, 'amount'),
                'receiver_name': payment.get('receiverName'),
                'transaction_ref': payment.get('transactionRef'),
                'receipt_image': payment.get('receiptImage'),
                'notes': payment.get('notes')
            }

        info = {
            'name': data.get('name'),
            'phone': data.get('phone'),
            'email': data.get('email'),
            'church': data.get('church'),
            'zone': data.get('zone'),
            'meal_choice': data.get('mealChoice'),
            'guest_name': data.get('guestName'),
            'group_size': _int_field(data, 'groupSize', InvalidRegistration),
            'attendees': _attendees(data.get('attendees'))
        }
        registration = registrations.register_new(info, data.get('ticketType', 'solo'), payment)
        return jsonify({'status': 'success', 'registration': registration.to_dict()}), 201

    @app.route('/registrations/<registration_id>', methods=['GET'])
    @swag_from({
        'tags': ['Registrations'],
        'description': 'Fetch a registration with its money and ticket state',
        'parameters': [
            {'name': 'registration_id', 'in': 'path', 'type': 'string', 'required': True}
        ],
        'responses': {
            '200': {'description': 'Registration details'},
            '404': {'description': 'Registration not found', 'schema': ERROR_SCHEMA}
        }
    })
    def get_registration(registration_id):
        registration = registrations.get_registration(registration_id)
        return jsonify({'status': 'success', 'registration': registration.to_dict()})

    @app.route('/registrations/<registration_id>/payments', methods=['GET'])
    @swag_from({
        'tags': ['Payments'],
        'description': 'Payment history for a registration, oldest first',
        'parameters': [
            {'name': 'registration_id', 'in': 'path', 'type': 'string', 'required': True}
        ],
        'responses': {
            '200': {'description': 'Payment list'},
            '404': {'description': 'Registration not found', 'schema': ERROR_SCHEMA}
        }
    })
    def list_payments(registration_id):
        registrations.get_registration(registration_id)
        history = payments.list_by_registration(registration_id)
        return jsonify({'status': 'success', 'payments': [p.to_dict() for p in history]})

    @app.route('/registrations/<registration_id>/payments', methods=['POST'])
    @staff_required
    @swag_from({
        'tags': ['Payments'],
        'description': 'Record a further payment against the outstanding balance',
        'parameters': [
            STAFF_PIN_PARAM,
            {'name': 'registration_id', 'in': 'path', 'type': 'string', 'required': True},
            {
                'name': 'body',
                'in': 'body',
                'required': True,
                'schema': {
                    'type': 'object',
                    'properties': {
                        'amount': {'type': 'integer'},
                        'method': {'type': 'string', 'enum': ['cash', 'transfer']},
                        'receiverName': {'type': 'string'},
                        'transactionRef': {'type': 'string'},
                        'receiptImage': {'type': 'string'},
                        'notes': {'type': 'string'}
                    }
                }
            }
        ],
        'responses': {
            '201': {'description': 'Payment recorded'},
            '400': {'description': 'Invalid amount or missing evidence', 'schema': ERROR_SCHEMA},
            '404': {'description': 'Registration not found', 'schema': ERROR_SCHEMA}
        }
    })
    def add_payment(registration_id):
        data = _json_body()
        amount = _int_field(data, 'amount')
        if amount is None:
            raise InvalidAmount('Amount is required')
        registration = registrations.add_payment(
            registration_id,
            amount,
            data.get('method'),
            receiver_name=data.get('receiverName'),
            transaction_ref=data.get('transactionRef'),
            receipt_image=data.get('receiptImage'),
            notes=data.get('notes')
        )
        return jsonify({'status': 'success', 'registration': registration.to_dict()}), 201

    @app.route('/payments/<int:payment_id>/approve', methods=['POST'])
    @staff_required
    @swag_from({
        'tags': ['Payments'],
        'description': 'Approve a specific pending transfer payment',
        'parameters': [
            STAFF_PIN_PARAM,
            {'name': 'payment_id', 'in': 'path', 'type': 'integer', 'required': True},
            {
                'name': 'body',
                'in': 'body',
                'required': False,
                'schema': {'type': 'object', 'properties': {'approver': {'type': 'string'}}}
            }
        ],
        'responses': {
            '200': {'description': 'Payment approved'},
            '404': {'description': 'Payment not found', 'schema': ERROR_SCHEMA},
            '409': {'description': 'Payment already approved', 'schema': ERROR_SCHEMA}
        }
    })
    def approve_payment(payment_id):
        data = request.get_json(silent=True) or {}
        registration = registrations.approve_payment(payment_id, _approver(data))
        return jsonify({'status': 'success', 'registration': registration.to_dict()})

    @app.route('/registrations/<registration_id>/approve', methods=['POST'])
    @staff_required
    @swag_from({
        'tags': ['Payments'],
        'description': 'Approve the oldest pending payment of a registration',
        'parameters': [
            STAFF_PIN_PARAM,
            {'name': 'registration_id', 'in': 'path', 'type': 'string', 'required': True},
            {
                'name': 'body',
                'in': 'body',
                'required': False,
                'schema': {'type': 'object', 'properties': {'approver': {'type': 'string'}}}
            }
        ],
        'responses': {
            '200': {'description': 'Payment approved'},
            '404': {'description': 'Registration not found', 'schema': ERROR_SCHEMA},
            '409': {'description': 'Nothing pending to approve', 'schema': ERROR_SCHEMA}
        }
    })
    def approve_oldest(registration_id):
        data = request.get_json(silent=True) or {}
        registration = registrations.approve_oldest_pending(registration_id, _approver(data))
        return jsonify({'status': 'success', 'registration': registration.to_dict()})

    @app.route('/registrations/search', methods=['GET'])
    @staff_required
    @swag_from({
        'tags': ['Check-In'],
        'description': 'Search registrations by id, name, phone or email',
        'parameters': [
            STAFF_PIN_PARAM,
            {'name': 'q', 'in': 'query', 'type': 'string', 'required': True}
        ],
        'responses': {
            '200': {'description': 'Matching registrations'}
        }
    })
    def search_registrations():
        matches = checkin.search(request.args.get('q'))
        return jsonify({'status': 'success', 'registrations': [r.to_dict() for r in matches]})

    @app.route('/checkin', methods=['POST'])
    @staff_required
    @swag_from({
        'tags': ['Check-In'],
        'description': 'Check an attendee in by scanned credential, ticket id or search text',
        'parameters': [
            STAFF_PIN_PARAM,
            {
                'name': 'body',
                'in': 'body',
                'required': True,
                'schema': {'type': 'object', 'properties': {'identifier': {'type': 'string'}}}
            }
        ],
        'responses': {
            '200': {
                'description': 'Checked in, already checked in, or several candidates',
                'schema': {
                    'type': 'object',
                    'properties': {
                        'status': {'type': 'string'},
                        'message': {'type': 'string'},
                        'balanceWarning': {'type': 'integer'},
                        'registration': {'type': 'object'},
                        'candidates': {'type': 'array', 'items': {'type': 'object'}}
                    }
                }
            },
            '404': {'description': 'No registration matches', 'schema': ERROR_SCHEMA}
        }
    })
    def check_in():
        data = request.get_json(silent=True) or {}
        result = checkin.check_in(data.get('identifier'))
        return jsonify(result.to_dict())

    @app.route('/scan/<registration_id>', methods=['GET'])
    @staff_required
    @swag_from({
        'tags': ['Check-In'],
        'description': 'Check in the ticket whose id was scanned',
        'parameters': [
            STAFF_PIN_PARAM,
            {'name': 'registration_id', 'in': 'path', 'type': 'string', 'required': True}
        ],
        'responses': {
            '200': {'description': 'Checked in or already checked in'},
            '404': {'description': 'Ticket not found', 'schema': ERROR_SCHEMA}
        }
    })
    def scan_qr(registration_id):
        result = checkin.check_in(registration_id)
        return jsonify(result.to_dict())

    @app.route('/tickets/<registration_id>/qr', methods=['GET'])
    @swag_from({
        'tags': ['Tickets'],
        'description': 'QR code image of an issued ticket',
        'parameters': [
            {'name': 'registration_id', 'in': 'path', 'type': 'string', 'required': True}
        ],
        'produces': ['image/png'],
        'responses': {
            '200': {'description': 'PNG image'},
            '404': {'description': 'No ticket issued yet'}
        }
    })
    def ticket_qr(registration_id):
        registration = registrations.get_registration(registration_id)
        if not registration.ticket_generated:
            abort(404, description='Ticket not issued yet')
        return send_from_directory(app.config['QR_FOLDER'], registration.ticket_qr, mimetype='image/png')

    with app.app_context():
        db.create_all()

    return app


if __name__ == '__main__':
    create_app().run(host='0.0.0.0', port=5000)
