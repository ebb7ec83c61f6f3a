# tickets.py
import json
import logging
import os

import qrcode
from flask import current_app

from errors import TicketRenderError

logger = logging.getLogger(__name__)


def credential_payload(registration):
    payload = {
        'id': registration.id,
        'name': registration.name,
        'ticketType': registration.ticket_type
    }
    if registration.guest_name:
        payload['guestName'] = registration.guest_name
    return payload


def encode_credential(payload):
    # Compact separators keep the scanned text identical to what the web client emits
    return json.dumps(payload, separators=(',', ':'), ensure_ascii=False)


def decode_credential(text):
    """Return the registration id embedded in a scanned credential, or None."""
    try:
        payload = json.loads(text)
    except (TypeError, ValueError):
        return None
    if isinstance(payload, dict) and payload.get('id'):
        return str(payload['id'])
    return None


def generate_qr_code(registration_id, data):
    folder = current_app.config['QR_FOLDER']
    file_name = f"{registration_id}.png"
    file_path = os.path.join(folder, file_name)

    try:
        os.makedirs(folder, exist_ok=True)
        qr_img = qrcode.make(data)
        qr_img.save(file_path)
    except (OSError, ValueError) as e:
        logger.error('QR code for registration %s could not be written: %s', registration_id, e)
        raise TicketRenderError() from e
    return file_name


def remove_qr_code(file_name):
    try:
        os.remove(os.path.join(current_app.config['QR_FOLDER'], file_name))
    except FileNotFoundError:
        pass


def maybe_issue_ticket(registration):
    """Mint the ticket credential once the registration is fully paid.

    Issuance happens at most once; a registration that already has a ticket
    or still owes money is returned untouched.
    """
    if registration.ticket_generated or registration.balance > 0:
        return registration

    data = encode_credential(credential_payload(registration))
    registration.ticket_qr = generate_qr_code(registration.id, data)
    registration.ticket_generated = True
    logger.info('Ticket issued for registration %s', registration.id)
    return registration
