# payments.py
"""Append-only payment log backed by the ``payment`` table.

Calls here join the caller's session transaction; the registration state
machine decides when to commit or roll back.
"""
import logging

from sqlalchemy import func

from errors import AlreadyApproved, MissingEvidence, NotFound
from models import db, Payment, utcnow

logger = logging.getLogger(__name__)

PAYMENT_METHODS = ('cash', 'transfer')


def check_evidence(method, receiver_name=None, transaction_ref=None):
    if method not in PAYMENT_METHODS:
        raise MissingEvidence('Select a payment method')
    if method == 'cash' and not (receiver_name or '').strip():
        raise MissingEvidence('Cash payments need the name of the staff member who received them')
    if method == 'transfer' and not (transaction_ref or '').strip():
        raise MissingEvidence('Please enter transaction reference')


def append(registration_id, amount, method, receiver_name=None, transaction_ref=None,
           receipt_image=None, notes=None):
    # Cash is taken in person by a staff member, so it counts straight away
    is_cash = method == 'cash'
    receiver = receiver_name.strip() if receiver_name else None
    payment = Payment(
        registration_id=registration_id,
        amount=amount,
        payment_method=method,
        receiver_name=receiver,
        transaction_ref=transaction_ref.strip() if transaction_ref else None,
        receipt_image=receipt_image,
        notes=notes,
        status='approved' if is_cash else 'pending',
        approved_by=receiver if is_cash else None,
        approved_at=utcnow() if is_cash else None
    )
    db.session.add(payment)
    db.session.flush()
    logger.info('Payment %s of %s by %s recorded for registration %s (%s)',
                payment.id, amount, method, registration_id, payment.status)
    return payment


def get(payment_id, for_update=False):
    payment = db.session.get(Payment, payment_id, with_for_update=for_update or None)
    if payment is None:
        raise NotFound(f'Payment {payment_id} not found')
    return payment


def list_by_registration(registration_id):
    return Payment.query.filter_by(registration_id=registration_id) \
        .order_by(Payment.created_at, Payment.id).all()


def oldest_pending(registration_id):
    return Payment.query.filter_by(registration_id=registration_id, status='pending') \
        .order_by(Payment.created_at, Payment.id).first()


def mark_approved(payment_id, approver):
    payment = get(payment_id, for_update=True)
    if payment.is_approved:
        logger.error('Payment %s was already approved by %s', payment.id, payment.approved_by)
        raise AlreadyApproved(f'Payment {payment.id} was already approved by {payment.approved_by}')

    payment.status = 'approved'
    payment.approved_by = approver
    payment.approved_at = utcnow()
    db.session.flush()
    logger.info('Payment %s approved by %s', payment.id, approver)
    return payment


def approved_total(registration_id):
    return db.session.query(func.coalesce(func.sum(Payment.amount), 0)).filter(
        Payment.registration_id == registration_id,
        Payment.status == 'approved'
    ).scalar()
