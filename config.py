# config.py
import os


class Config:
    SQLALCHEMY_DATABASE_URI = os.getenv('DATABASE_URL', 'sqlite:///database.db')
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    QR_FOLDER = os.getenv('QR_FOLDER', os.path.join(os.getcwd(), 'qr_codes'))

    # Price of one solo seat; guest and group prices derive from it
    TICKET_UNIT_PRICE = int(os.getenv('TICKET_UNIT_PRICE', '2000'))

    STAFF_PIN = os.getenv('STAFF_PIN', '1234')

    # Brevo transactional email
    BREVO_API_URL = 'https://api.brevo.com/v3/smtp/email'
    BREVO_API_KEY = os.getenv('BREVO_API_KEY', '')
    MAIL_SENDER_NAME = os.getenv('MAIL_SENDER_NAME', 'Event Tickets')
    MAIL_SENDER_EMAIL = os.getenv('MAIL_SENDER_EMAIL', 'tickets@example.com')
    MAIL_TIMEOUT = float(os.getenv('MAIL_TIMEOUT', '10'))

    EVENT_NAME = os.getenv('EVENT_NAME', 'Annual Gala Event')
    EVENT_DATE = os.getenv('EVENT_DATE', 'December 31')
    EVENT_TIME = os.getenv('EVENT_TIME', '7:00 PM')

    LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')
