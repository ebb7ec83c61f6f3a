# mailer.py
import base64
import logging
import os

import requests
from flask import current_app

logger = logging.getLogger(__name__)

TICKET_LABELS = {
    'solo': 'Solo Ticket',
    'guest': 'Me + 1 Guest',
    'group': 'Group Ticket',
}


def _ticket_html(registration, config):
    guest_row = ''
    if registration.guest_name:
        guest_row = f"<p><strong>Guest:</strong> {registration.guest_name}</p>"
    elif registration.group_size:
        guest_row = f"<p><strong>Group:</strong> {registration.group_size} people</p>"

    return (
        "<html><head></head><body>"
        f"<p>Dear {registration.name},</p>"
        f"<p>Thank you for registering for {config['EVENT_NAME']}! Your e-ticket is attached.</p>"
        f"<p><strong>Date:</strong> {config['EVENT_DATE']}</p>"
        f"<p><strong>Time:</strong> {config['EVENT_TIME']}</p>"
        f"<p><strong>Ticket ID:</strong> {registration.id}</p>"
        f"<p><strong>Church:</strong> {registration.church}</p>"
        f"<p><strong>Zone:</strong> {registration.zone or '-'}</p>"
        f"<p><strong>Ticket Type:</strong> {TICKET_LABELS.get(registration.ticket_type, registration.ticket_type)}</p>"
        f"{guest_row}"
        "<p>Please present the QR code at the entrance.</p>"
        "</body></html>"
    )


def send_ticket_email(registration):
    """Send the e-ticket to the attendee.

    Returns True on success. Failures are logged and reported as False; they
    never propagate, since the ticket is already issued by the time this runs.
    """
    config = current_app.config
    api_key = config.get('BREVO_API_KEY')
    if not api_key:
        logger.warning('BREVO_API_KEY not set, ticket email for %s skipped', registration.id)
        return False

    email_data = {
        "sender": {
            "name": config['MAIL_SENDER_NAME'],
            "email": config['MAIL_SENDER_EMAIL']
        },
        "to": [
            {
                "email": registration.email,
                "name": registration.name
            }
        ],
        "subject": f"Your {config['EVENT_NAME']} E-Ticket",
        "htmlContent": _ticket_html(registration, config)
    }

    qr_path = os.path.join(config['QR_FOLDER'], registration.ticket_qr or '')
    if registration.ticket_qr and os.path.exists(qr_path):
        with open(qr_path, 'rb') as f:
            email_data["attachment"] = [{
                "name": registration.ticket_qr,
                "content": base64.b64encode(f.read()).decode('ascii')
            }]

    headers = {
        "accept": "application/json",
        "api-key": api_key,
        "content-type": "application/json"
    }

    try:
        response = requests.post(config['BREVO_API_URL'], headers=headers, json=email_data,
                                 timeout=config['MAIL_TIMEOUT'])
    except requests.RequestException as e:
        logger.warning('Error sending ticket email for %s: %s', registration.id, e)
        return False

    if response.status_code == 201:
        logger.info('Ticket email sent to %s for registration %s', registration.email, registration.id)
        return True

    logger.warning('Error sending ticket email for %s: %s, %s',
                   registration.id, response.status_code, response.text)
    return False
