import os
from dotenv import load_dotenv

load_dotenv()


class Config:
    SECRET_KEY = os.environ.get('SECRET_KEY') or (
        'dev-secret-key-change-in-production'
    )
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL') or (
        'sqlite:///marketplace.db'
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Shared secrets for the scheduled job trigger and the payment provider.
    CRON_SECRET = os.environ.get('CRON_SECRET', '')
    PAYMENT_WEBHOOK_SECRET = os.environ.get('PAYMENT_WEBHOOK_SECRET', '')

    # Pricing rules
    CURRENCY = os.environ.get('CURRENCY', 'USD')
    TAX_RATE = os.environ.get('TAX_RATE', '0.10')
    FREE_SHIPPING_THRESHOLD = os.environ.get('FREE_SHIPPING_THRESHOLD', '50.00')
    SHIPPING_FLAT_FEE = os.environ.get('SHIPPING_FLAT_FEE', '4.99')

    # Percentage applied to new sellers.
    DEFAULT_COMMISSION_RATE = os.environ.get('DEFAULT_COMMISSION_RATE', '10')

    # Pagination configuration
    ITEMS_PER_PAGE = 20

    # Log files. None disables the file handler.
    LOG_FILE = os.environ.get('LOG_FILE', 'app.log')
    MAJOR_EVENTS_LOG = os.environ.get('MAJOR_EVENTS_LOG', 'major_events.log')


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SECRET_KEY = 'test-secret-key'
    CRON_SECRET = 'test-cron-secret'
    PAYMENT_WEBHOOK_SECRET = 'test-webhook-secret'
    CURRENCY = 'USD'
    TAX_RATE = '0.10'
    FREE_SHIPPING_THRESHOLD = '50.00'
    SHIPPING_FLAT_FEE = '4.99'
    DEFAULT_COMMISSION_RATE = '10'
    LOG_FILE = None
    MAJOR_EVENTS_LOG = None
