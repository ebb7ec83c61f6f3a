# registrations.py
"""Registration lifecycle: pending until the balance is cleared, then paid.

Every operation that touches money re-derives ``total_paid`` from the sum of
approved payments, sets ``balance`` and ``status`` from it, and hands the
registration to the ticket issuer. Nothing else writes those fields.
"""
import logging
import time
from contextlib import contextmanager

from flask import current_app

import ledger
import mailer
import payments
import tickets
from errors import InvalidAmount, InvalidRegistration, NoPendingPayment, NotFound
from models import db, Attendee, MEAL_CHOICES, Registration

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ('name', 'phone', 'email', 'church')


def new_registration_id():
    candidate = int(time.time() * 1000)
    while db.session.get(Registration, str(candidate)) is not None:
        candidate += 1
    return str(candidate)


def get_registration(registration_id, for_update=False):
    registration = db.session.get(Registration, registration_id, with_for_update=for_update or None)
    if registration is None:
        raise NotFound(f'Registration {registration_id} not found')
    return registration


def _check_meal(meal_choice):
    if meal_choice and meal_choice not in MEAL_CHOICES:
        raise InvalidRegistration(f'Unknown meal choice: {meal_choice}')


def validate_attendee(info, ticket_type):
    missing = [field for field in REQUIRED_FIELDS if not (info.get(field) or '').strip()]
    if missing:
        raise InvalidRegistration(f"Please fill all required fields: {', '.join(missing)}")
    if ticket_type not in ledger.TICKET_TYPES:
        raise InvalidRegistration(f'Unknown ticket type: {ticket_type}')
    if ticket_type == 'guest' and not (info.get('guest_name') or '').strip():
        raise InvalidRegistration('Please enter guest name')

    _check_meal(info.get('meal_choice'))
    for attendee in info.get('attendees') or []:
        if not (attendee.get('name') or '').strip():
            raise InvalidRegistration('Every group attendee needs a name')
        _check_meal(attendee.get('meal_choice'))


def recalculate(registration):
    total_paid = payments.approved_total(registration.id)
    balance = ledger.balance(registration.total_due, total_paid)
    if balance < 0:
        raise InvalidAmount(f'Approved payments exceed the amount due on {registration.id}')

    registration.total_paid = total_paid
    registration.balance = balance
    registration.status = 'paid' if balance <= 0 else 'pending'
    return tickets.maybe_issue_ticket(registration)


def _discard_new_ticket(registration, had_ticket):
    # The QR file is written before commit; drop it when the transaction is undone
    if registration is not None and registration.ticket_generated and not had_ticket:
        tickets.remove_qr_code(registration.ticket_qr)


def _notify_if_issued(registration, had_ticket):
    if registration.ticket_generated and not had_ticket:
        mailer.send_ticket_email(registration)


@contextmanager
def _mutation(registration_id):
    """Lock one registration row for a read-modify-write, then commit or roll back."""
    registration, had_ticket = None, False
    try:
        registration = get_registration(registration_id, for_update=True)
        had_ticket = registration.ticket_generated
        yield registration
        db.session.commit()
    except Exception:
        _discard_new_ticket(registration, had_ticket)
        db.session.rollback()
        raise
    _notify_if_issued(registration, had_ticket)


def register_new(info, ticket_type, payment=None):
    """Create a registration and record its first payment.

    ``payment`` is a mapping with ``method``, ``amount`` and the evidence for
    that method. A payment without an amount covers the full ticket.
    """
    validate_attendee(info, ticket_type)
    group_size = info.get('group_size') if ticket_type == 'group' else None
    total_due = ledger.compute_due(ticket_type, group_size, current_app.config['TICKET_UNIT_PRICE'])

    if payment:
        payments.check_evidence(payment.get('method'), payment.get('receiver_name'),
                                payment.get('transaction_ref'))
        amount = payment.get('amount')
        if amount is None:
            amount = total_due
        ledger.check_amount(amount, total_due)

    registration = None
    try:
        registration = Registration(
            id=new_registration_id(),
            name=info['name'].strip(),
            phone=info['phone'].strip(),
            email=info['email'].strip(),
            church=info['church'].strip(),
            zone=info.get('zone'),
            meal_choice=info.get('meal_choice'),
            ticket_type=ticket_type,
            guest_name=info.get('guest_name') if ticket_type == 'guest' else None,
            group_size=group_size,
            total_due=total_due,
            total_paid=0,
            balance=total_due,
            status='pending'
        )
        db.session.add(registration)
        if ticket_type == 'group':
            for attendee in info.get('attendees') or []:
                db.session.add(Attendee(registration=registration, name=attendee['name'].strip(),
                                        meal_choice=attendee.get('meal_choice')))
        db.session.flush()

        if payment:
            registration.payment_method = payment['method']
            registration.receiver_name = payment.get('receiver_name')
            registration.transaction_ref = payment.get('transaction_ref')
            registration.receipt_image = payment.get('receipt_image')
            payments.append(registration.id, amount, payment['method'],
                            receiver_name=payment.get('receiver_name'),
                            transaction_ref=payment.get('transaction_ref'),
                            receipt_image=payment.get('receipt_image'),
                            notes=payment.get('notes'))

        recalculate(registration)
        db.session.commit()
    except Exception:
        _discard_new_ticket(registration, False)
        db.session.rollback()
        raise

    logger.info('Registration %s created for %s (%s, due %s, balance %s)',
                registration.id, registration.name, ticket_type, total_due, registration.balance)
    _notify_if_issued(registration, False)
    return registration


def add_payment(registration_id, amount, method, receiver_name=None, transaction_ref=None,
                receipt_image=None, notes=None):
    with _mutation(registration_id) as registration:
        payments.check_evidence(method, receiver_name, transaction_ref)
        ledger.check_amount(amount, registration.balance)

        payments.append(registration.id, amount, method,
                        receiver_name=receiver_name,
                        transaction_ref=transaction_ref,
                        receipt_image=receipt_image,
                        notes=notes)
        registration.payment_method = method
        recalculate(registration)
    return registration


def _approve(registration, payment_id, approver):
    payment = payments.mark_approved(payment_id, approver)
    ledger.apply_payment(registration.total_due, registration.total_paid, payment.amount)
    recalculate(registration)


def approve_payment(payment_id, approver):
    registration_id = payments.get(payment_id).registration_id
    with _mutation(registration_id) as registration:
        _approve(registration, payment_id, approver)
    return registration


def approve_oldest_pending(registration_id, approver):
    """Approve the registration's earliest payment still awaiting approval."""
    with _mutation(registration_id) as registration:
        pending = payments.oldest_pending(registration.id)
        if pending is None:
            raise NoPendingPayment(f'Registration {registration.id} has no pending payment')
        _approve(registration, pending.id, approver)
    return registration
