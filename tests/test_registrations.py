import os
from types import SimpleNamespace

import pytest

import payments
import registrations
import tickets
from errors import (AlreadyApproved, InvalidAmount, InvalidRegistration, MissingEvidence,
                    NoPendingPayment, NotFound, TicketRenderError)
from models import db, Payment, Registration


def assert_consistent(registration):
    approved = sum(p.amount for p in payments.list_by_registration(registration.id) if p.is_approved)
    assert registration.total_paid == approved
    assert registration.balance == registration.total_due - registration.total_paid
    assert (registration.status == 'paid') == (registration.balance <= 0)


def cash(amount=None, receiver='Jane'):
    return {'method': 'cash', 'amount': amount, 'receiver_name': receiver}


def transfer(amount, ref='TX123'):
    return {'method': 'transfer', 'amount': amount, 'transaction_ref': ref,
            'receipt_image': 'data:image/png;base64,AAAA'}


@pytest.fixture
def guest_with_transfer(app, attendee):
    return registrations.register_new(attendee(guest_name='Bola'), 'guest', transfer(1000))


def test_solo_cash_registration_is_paid_and_ticketed(app, attendee, sent_emails):
    registration = registrations.register_new(attendee(), 'solo', cash(2000))

    assert registration.status == 'paid'
    assert registration.total_due == 2000
    assert registration.balance == 0
    assert registration.ticket_generated is True
    assert registration.ticket_qr == f'{registration.id}.png'
    assert os.path.exists(os.path.join(app.config['QR_FOLDER'], registration.ticket_qr))
    assert sent_emails == [registration.id]

    [payment] = payments.list_by_registration(registration.id)
    assert payment.status == 'approved'
    assert payment.approved_by == 'Jane'
    assert payment.approved_at is not None
    assert_consistent(registration)


def test_payment_without_amount_covers_the_ticket(app, attendee):
    registration = registrations.register_new(attendee(), 'solo', cash())
    assert registration.total_paid == 2000
    assert registration.status == 'paid'


def test_transfer_registration_waits_for_approval(guest_with_transfer, sent_emails):
    registration = guest_with_transfer

    assert registration.status == 'pending'
    assert registration.total_due == 3000
    assert registration.total_paid == 0
    assert registration.balance == 3000
    assert registration.ticket_generated is False
    assert registration.ticket_qr is None
    assert registration.transaction_ref == 'TX123'
    assert sent_emails == []

    [payment] = payments.list_by_registration(registration.id)
    assert payment.status == 'pending'
    assert payment.approved_by is None
    assert_consistent(registration)


def test_approving_transfer_counts_it(guest_with_transfer):
    registration = registrations.approve_oldest_pending(guest_with_transfer.id, 'Admin Kemi')

    assert registration.total_paid == 1000
    assert registration.balance == 2000
    assert registration.status == 'pending'
    [payment] = payments.list_by_registration(registration.id)
    assert payment.status == 'approved'
    assert payment.approved_by == 'Admin Kemi'
    assert_consistent(registration)


def test_cash_top_up_then_approval_issues_ticket_once(guest_with_transfer, sent_emails):
    registration = registrations.add_payment(guest_with_transfer.id, 2000, 'cash', receiver_name='Tunde')
    assert registration.balance == 1000
    assert registration.status == 'pending'
    assert registration.ticket_generated is False

    registration = registrations.approve_oldest_pending(registration.id, 'admin')
    assert registration.balance == 0
    assert registration.status == 'paid'
    assert registration.ticket_generated is True
    assert sent_emails == [registration.id]
    assert_consistent(registration)


def test_paying_exact_balance_issues_ticket_in_same_call(app, attendee, sent_emails):
    registration = registrations.register_new(attendee(), 'solo')
    assert registration.balance == 2000
    assert payments.list_by_registration(registration.id) == []

    registration = registrations.add_payment(registration.id, 2000, 'cash', receiver_name='Tunde')
    assert registration.status == 'paid'
    assert registration.ticket_generated is True
    assert sent_emails == [registration.id]


def test_overpayment_rejected_and_state_unchanged(app, attendee):
    registration = registrations.register_new(attendee(), 'solo', cash(500))

    with pytest.raises(InvalidAmount):
        registrations.add_payment(registration.id, 1501, 'cash', receiver_name='Tunde')

    registration = registrations.get_registration(registration.id)
    assert registration.total_paid == 500
    assert registration.balance == 1500
    assert len(payments.list_by_registration(registration.id)) == 1


@pytest.mark.parametrize('amount', [0, -100])
def test_non_positive_payment_rejected(app, attendee, amount):
    registration = registrations.register_new(attendee(), 'solo')
    with pytest.raises(InvalidAmount):
        registrations.add_payment(registration.id, amount, 'cash', receiver_name='Tunde')


def test_exact_balance_accepted_while_transfer_pending(guest_with_transfer, sent_emails):
    registration = registrations.add_payment(guest_with_transfer.id, 3000, 'cash', receiver_name='Tunde')

    assert registration.balance == 0
    assert registration.status == 'paid'
    assert registration.ticket_generated is True
    assert sent_emails == [registration.id]

    # The late transfer would overpay, so approving it is refused and rolled back
    with pytest.raises(InvalidAmount):
        registrations.approve_oldest_pending(registration.id, 'admin')

    registration = registrations.get_registration(registration.id)
    assert registration.total_paid == 3000
    assert payments.oldest_pending(registration.id) is not None
    assert_consistent(registration)


def test_cash_needs_receiver_name(app, attendee):
    registration = registrations.register_new(attendee(), 'solo')
    with pytest.raises(MissingEvidence):
        registrations.add_payment(registration.id, 1000, 'cash', receiver_name='  ')


def test_transfer_needs_reference(app, attendee):
    with pytest.raises(MissingEvidence):
        registrations.register_new(attendee(), 'solo', transfer(2000, ref=''))
    assert Registration.query.count() == 0


def test_unknown_payment_method_rejected(app, attendee):
    registration = registrations.register_new(attendee(), 'solo')
    with pytest.raises(MissingEvidence):
        registrations.add_payment(registration.id, 1000, 'card')


def test_add_payment_to_missing_registration(app):
    with pytest.raises(NotFound):
        registrations.add_payment('nope', 1000, 'cash', receiver_name='Jane')


def test_second_approval_is_an_error(guest_with_transfer):
    [payment] = payments.list_by_registration(guest_with_transfer.id)
    registrations.approve_payment(payment.id, 'admin')

    with pytest.raises(AlreadyApproved):
        registrations.approve_payment(payment.id, 'admin')

    registration = registrations.get_registration(guest_with_transfer.id)
    assert registration.total_paid == 1000
    assert_consistent(registration)


def test_approving_cash_payment_is_already_approved(app, attendee):
    registration = registrations.register_new(attendee(), 'solo', cash(1000))
    [payment] = payments.list_by_registration(registration.id)
    with pytest.raises(AlreadyApproved):
        registrations.approve_payment(payment.id, 'admin')


def test_approve_missing_payment(app):
    with pytest.raises(NotFound):
        registrations.approve_payment(12345, 'admin')


def test_nothing_pending_to_approve(app, attendee):
    registration = registrations.register_new(attendee(), 'solo', cash(1000))
    with pytest.raises(NoPendingPayment):
        registrations.approve_oldest_pending(registration.id, 'admin')


def test_approve_oldest_pending_is_first_in_first_out(guest_with_transfer):
    registrations.add_payment(guest_with_transfer.id, 500, 'transfer', transaction_ref='TX2')
    first, second = payments.list_by_registration(guest_with_transfer.id)

    registrations.approve_oldest_pending(guest_with_transfer.id, 'admin')

    assert db.session.get(Payment, first.id).status == 'approved'
    assert db.session.get(Payment, second.id).status == 'pending'


def test_render_failure_aborts_registration(app, attendee, monkeypatch):
    def broken(data):
        raise OSError('disk full')

    monkeypatch.setattr(tickets.qrcode, 'make', broken)

    with pytest.raises(TicketRenderError):
        registrations.register_new(attendee(), 'solo', cash(2000))
    assert Registration.query.count() == 0
    assert Payment.query.count() == 0


def test_render_failure_aborts_payment(app, attendee, monkeypatch):
    registration = registrations.register_new(attendee(), 'solo')

    def broken(data):
        raise OSError('disk full')

    monkeypatch.setattr(tickets.qrcode, 'make', broken)

    with pytest.raises(TicketRenderError):
        registrations.add_payment(registration.id, 2000, 'cash', receiver_name='Jane')

    registration = registrations.get_registration(registration.id)
    assert registration.balance == 2000
    assert registration.ticket_generated is False
    assert payments.list_by_registration(registration.id) == []


def test_group_registration_with_attendees(app, attendee):
    info = attendee(group_size=3, attendees=[
        {'name': 'Chidi', 'meal_choice': 'amala-gbegiri'},
        {'name': 'Funke', 'meal_choice': 'eba-edikaikong'},
    ])
    registration = registrations.register_new(info, 'group', transfer(6000))

    assert registration.total_due == 6000
    assert [a.name for a in registration.attendees] == ['Chidi', 'Funke']
    assert registration.attendees[1].meal_choice == 'eba-edikaikong'


@pytest.mark.parametrize('overrides,ticket_type', [
    ({'name': ''}, 'solo'),
    ({'email': None}, 'solo'),
    ({}, 'guest'),
    ({'meal_choice': 'jollof'}, 'solo'),
    ({}, 'vip'),
    ({'group_size': 1}, 'group'),
])
def test_invalid_registrations_rejected(app, attendee, overrides, ticket_type):
    with pytest.raises(InvalidRegistration):
        registrations.register_new(attendee(**overrides), ticket_type)
    assert Registration.query.count() == 0


def test_registration_ids_are_unique_within_a_millisecond(app, attendee, monkeypatch):
    monkeypatch.setattr(registrations, 'time', SimpleNamespace(time=lambda: 1700000000.0))

    first = registrations.register_new(attendee(), 'solo')
    second = registrations.register_new(attendee(name='Bola'), 'solo')

    assert first.id == '1700000000000'
    assert second.id == '1700000000001'


def failing_commit():
    raise RuntimeError('database went away')


def test_failed_commit_removes_new_qr_file(app, attendee, monkeypatch):
    registration = registrations.register_new(attendee(), 'solo')
    registration_id = registration.id
    qr_path = os.path.join(app.config['QR_FOLDER'], f'{registration_id}.png')

    monkeypatch.setattr(db.session, 'commit', failing_commit)
    with pytest.raises(RuntimeError):
        registrations.add_payment(registration_id, 2000, 'cash', receiver_name='Jane')
    monkeypatch.undo()

    assert not os.path.exists(qr_path)
    registration = registrations.get_registration(registration_id)
    assert registration.ticket_generated is False
    assert registration.balance == 2000


def test_failed_registration_commit_leaves_no_qr_file(app, attendee, monkeypatch, sent_emails):
    monkeypatch.setattr(db.session, 'commit', failing_commit)

    with pytest.raises(RuntimeError):
        registrations.register_new(attendee(), 'solo', cash(2000))

    folder = app.config['QR_FOLDER']
    assert not os.path.isdir(folder) or os.listdir(folder) == []
    assert sent_emails == []


def test_existing_ticket_file_kept_when_later_change_fails(app, attendee):
    registration = registrations.register_new(attendee(), 'solo', cash(2000))
    qr_path = os.path.join(app.config['QR_FOLDER'], registration.ticket_qr)

    with pytest.raises(InvalidAmount):
        registrations.add_payment(registration.id, 100, 'cash', receiver_name='Jane')

    assert os.path.exists(qr_path)
