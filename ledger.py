# ledger.py
"""Money arithmetic for registrations.

Amounts are whole naira, never fractional. A balance that would drop below
zero is rejected rather than clamped so double payments surface as errors.
"""
from errors import InvalidAmount, InvalidRegistration

TICKET_TYPES = ('solo', 'guest', 'group')


def compute_due(ticket_type, group_size=None, unit_price=2000):
    if ticket_type == 'solo':
        return unit_price
    if ticket_type == 'guest':
        # Two seats at a bundled rate
        return unit_price * 3 // 2
    if ticket_type == 'group':
        if not group_size or group_size < 2:
            raise InvalidRegistration('Group tickets need a group size of at least 2')
        return unit_price * group_size
    raise InvalidRegistration(f'Unknown ticket type: {ticket_type}')


def balance(total_due, total_paid):
    return total_due - total_paid


def check_amount(amount, outstanding):
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise InvalidAmount('Amount must be a whole number')
    if amount <= 0:
        raise InvalidAmount('Amount must be greater than zero')
    if amount > outstanding:
        raise InvalidAmount(f'Amount exceeds balance of ₦{outstanding:,}')
    return amount


def apply_payment(total_due, total_paid, amount):
    """Return ``(new_total_paid, new_balance)`` after counting ``amount``."""
    check_amount(amount, balance(total_due, total_paid))
    new_total_paid = total_paid + amount
    return new_total_paid, balance(total_due, new_total_paid)
