# models.py
from flask_sqlalchemy import SQLAlchemy
from datetime import datetime, timezone

db = SQLAlchemy()

MEAL_CHOICES = {
    'semo-egusi': 'Semo & Egusi',
    'amala-gbegiri': 'Amala & Gbegiri',
    'fufu-edikaikong': 'Fufu & Edikaikong',
    'eba-edikaikong': 'Eba & Edikaikong',
}


def utcnow():
    return datetime.now(timezone.utc)


class Registration(db.Model):
    id = db.Column(db.String(32), primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    phone = db.Column(db.String(20), nullable=False)
    email = db.Column(db.String(120), nullable=False)
    church = db.Column(db.String(120), nullable=False)
    zone = db.Column(db.String(60))
    meal_choice = db.Column(db.String(30))
    ticket_type = db.Column(db.String(10), nullable=False)
    guest_name = db.Column(db.String(100))
    group_size = db.Column(db.Integer)

    # Money fields are written only by registrations.recalculate()
    total_due = db.Column(db.Integer, nullable=False)
    total_paid = db.Column(db.Integer, nullable=False, default=0)
    balance = db.Column(db.Integer, nullable=False)
    status = db.Column(db.String(20), nullable=False, default='pending')

    payment_method = db.Column(db.String(10))
    receiver_name = db.Column(db.String(100))
    transaction_ref = db.Column(db.String(100))
    receipt_image = db.Column(db.Text)

    ticket_qr = db.Column(db.String(200))
    ticket_generated = db.Column(db.Boolean, nullable=False, default=False)
    checked_in = db.Column(db.Boolean, nullable=False, default=False)
    checked_in_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, default=utcnow)

    attendees = db.relationship('Attendee', backref='registration', order_by='Attendee.id')
    payments = db.relationship('Payment', backref='registration', order_by='Payment.id')

    def __repr__(self):
        return f'<Registration {self.id}: {self.name} - {self.status}>'

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'phone': self.phone,
            'email': self.email,
            'church': self.church,
            'zone': self.zone,
            'mealChoice': self.meal_choice,
            'ticketType': self.ticket_type,
            'guestName': self.guest_name,
            'groupSize': self.group_size,
            'attendees': [a.to_dict() for a in self.attendees],
            'totalDue': self.total_due,
            'totalPaid': self.total_paid,
            'balance': self.balance,
            'status': self.status,
            'paymentMethod': self.payment_method,
            'ticketQR': self.ticket_qr,
            'ticketGenerated': self.ticket_generated,
            'checkedIn': self.checked_in,
            'checkedInAt': self.checked_in_at.isoformat() if self.checked_in_at else None,
            'createdAt': self.created_at.isoformat() if self.created_at else None
        }


class Attendee(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    registration_id = db.Column(db.String(32), db.ForeignKey('registration.id'), nullable=False)
    name = db.Column(db.String(100), nullable=False)
    meal_choice = db.Column(db.String(30))

    def to_dict(self):
        return {'name': self.name, 'mealChoice': self.meal_choice}


class Payment(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    registration_id = db.Column(db.String(32), db.ForeignKey('registration.id'), nullable=False, index=True)
    amount = db.Column(db.Integer, nullable=False)
    payment_method = db.Column(db.String(10), nullable=False)
    receiver_name = db.Column(db.String(100))
    transaction_ref = db.Column(db.String(100))
    receipt_image = db.Column(db.Text)
    notes = db.Column(db.Text)
    status = db.Column(db.String(20), nullable=False, default='pending')
    approved_by = db.Column(db.String(100))
    approved_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, default=utcnow)

    def __repr__(self):
        return f'<Payment {self.id}: {self.amount} {self.payment_method} - {self.status}>'

    @property
    def is_approved(self):
        return self.status == 'approved'

    def to_dict(self):
        return {
            'id': self.id,
            'registrationId': self.registration_id,
            'amount': self.amount,
            'paymentMethod': self.payment_method,
            'receiverName': self.receiver_name,
            'transactionRef': self.transaction_ref,
            'notes': self.notes,
            'status': self.status,
            'approvedBy': self.approved_by,
            'approvedAt': self.approved_at.isoformat() if self.approved_at else None,
            'createdAt': self.created_at.isoformat() if self.created_at else None
        }


class CheckInLog(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    registration_id = db.Column(db.String(32), db.ForeignKey('registration.id'), nullable=False)
    name = db.Column(db.String(100), nullable=False)
    method = db.Column(db.String(10), nullable=False, default='scan')
    checked_in_at = db.Column(db.DateTime, nullable=False, default=utcnow)
