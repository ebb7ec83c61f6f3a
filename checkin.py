# checkin.py
import logging
from dataclasses import dataclass, field
from typing import List, Optional

from sqlalchemy import or_

import tickets
from errors import NotFound
from models import db, CheckInLog, Registration, utcnow

logger = logging.getLogger(__name__)


@dataclass
class CheckInResult:
    status: str
    registration: Optional[Registration] = None
    balance_warning: Optional[int] = None
    candidates: List[Registration] = field(default_factory=list)

    @property
    def already_checked_in(self):
        return self.status == 'already_checked_in'

    def to_dict(self):
        messages = {
            'checked_in': 'Checked in successfully',
            'already_checked_in': 'Already checked in',
            'ambiguous': 'Pick the matching registration and check in by ticket ID',
        }
        return {
            'status': self.status,
            'message': messages[self.status],
            'registration': self.registration.to_dict() if self.registration else None,
            'balanceWarning': self.balance_warning,
            'candidates': [c.to_dict() for c in self.candidates]
        }


def search(query):
    """Case-insensitive match on id, name, phone or email."""
    text = (query or '').strip()
    if not text:
        return []
    escaped = text.replace('\\', '\\\\').replace('%', '\\%').replace('_', '\\_')
    pattern = f'%{escaped}%'
    return Registration.query.filter(or_(
        Registration.id.ilike(pattern, escape='\\'),
        Registration.name.ilike(pattern, escape='\\'),
        Registration.phone.ilike(pattern, escape='\\'),
        Registration.email.ilike(pattern, escape='\\')
    )).order_by(Registration.name, Registration.id).all()


def _admit(registration_id, method):
    try:
        registration = db.session.get(Registration, registration_id, with_for_update=True)
        if registration is None:
            raise NotFound(f'Registration {registration_id} not found')

        balance_warning = registration.balance if registration.balance > 0 else None
        if registration.checked_in:
            logger.warning('Registration %s is already checked in', registration.id)
            db.session.rollback()
            return CheckInResult('already_checked_in', registration, balance_warning)

        registration.checked_in = True
        registration.checked_in_at = utcnow()
        db.session.add(CheckInLog(
            registration_id=registration.id,
            name=registration.name,
            method=method,
            checked_in_at=registration.checked_in_at
        ))
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    if balance_warning:
        logger.warning('Registration %s checked in with outstanding balance %s',
                       registration.id, balance_warning)
    else:
        logger.info('Registration %s checked in (%s)', registration.id, method)
    return CheckInResult('checked_in', registration, balance_warning)


def check_in(identifier):
    """Admit the holder of a scanned credential or ticket id.

    Any other text is treated as a search and returns the matching
    registrations as candidates without checking anyone in.

    An unpaid balance does not block entry; it is reported back as
    ``balance_warning`` so staff at the door can decide.
    """
    text = (identifier or '').strip()
    if not text:
        raise NotFound('Enter a ticket ID or search term')

    scanned_id = tickets.decode_credential(text)
    registration_id = scanned_id or text
    if db.session.get(Registration, registration_id) is not None:
        return _admit(registration_id, 'scan' if scanned_id else 'manual')

    # Search text never admits anyone; staff resubmit the chosen ticket id
    candidates = search(text)
    if not candidates:
        raise NotFound('Ticket ID not found')
    return CheckInResult('ambiguous', candidates=candidates)
