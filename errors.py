# errors.py


class TicketingError(Exception):
    """Base error for a single operation on a single registration."""

    status_code = 400
    message = 'Request could not be processed'

    def __init__(self, message=None):
        super().__init__(message or self.message)
        if message:
            self.message = message

    def to_dict(self):
        return {
            'status': 'error',
            'error': type(self).__name__,
            'message': self.message
        }


class InvalidAmount(TicketingError):
    message = 'Payment amount is not valid for this balance'


class MissingEvidence(TicketingError):
    message = 'Payment evidence is missing'


class InvalidRegistration(TicketingError):
    message = 'Registration details are incomplete'


class NotFound(TicketingError):
    status_code = 404
    message = 'Not found'


class AlreadyApproved(TicketingError):
    status_code = 409
    message = 'Payment already approved'


class NoPendingPayment(TicketingError):
    status_code = 409
    message = 'No pending payment to approve'


class TicketRenderError(TicketingError):
    status_code = 502
    message = 'Ticket QR code could not be generated'
