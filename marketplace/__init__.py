from flask import Flask, jsonify
from flask_migrate import Migrate
from flask_login import LoginManager
from sqlalchemy.exc import SQLAlchemyError
from marketplace.extensions import db
from marketplace.config import Config
from marketplace.errors import MarketplaceError, PersistenceError
from marketplace.middleware import setup_auth_middleware
from marketplace.utils import error_response
import click
import logging

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

logger = logging.getLogger(__name__)

migrate = Migrate()
login_manager = LoginManager()


def configure_logging(app):
    handlers = [logging.StreamHandler()]
    if app.config.get('LOG_FILE'):
        handlers.append(logging.FileHandler(app.config['LOG_FILE']))
    logging.basicConfig(level=logging.INFO, format=LOG_FORMAT,
                        handlers=handlers)

    major_logger = logging.getLogger('major_events')
    if app.config.get('MAJOR_EVENTS_LOG') and not major_logger.handlers:
        handler = logging.FileHandler(app.config['MAJOR_EVENTS_LOG'])
        handler.setFormatter(logging.Formatter(
            '%(asctime)s - %(levelname)s - %(message)s'))
        major_logger.addHandler(handler)
        major_logger.setLevel(logging.INFO)
        major_logger.propagate = False


def create_app(config_class=Config):
    app = Flask(__name__)
    app.config.from_object(config_class)
    configure_logging(app)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)
    login_manager.init_app(app)

    from marketplace.services.payment_service import MockPaymentGateway
    app.extensions['payment_gateway'] = MockPaymentGateway()

    # Setup user loader
    from marketplace.models import User

    @login_manager.user_loader
    def load_user(user_id):
        return db.session.get(User, int(user_id))

    @login_manager.unauthorized_handler
    def unauthorized():
        return jsonify({'error': 'Not logged in'}), 401

    @app.errorhandler(MarketplaceError)
    def handle_marketplace_error(e):
        if e.status_code >= 500:
            logger.error("%s: %s", e.code, e.message, exc_info=True)
        else:
            logger.info("Request failed with %s: %s", e.code, e.message)
        return error_response(e)

    @app.errorhandler(SQLAlchemyError)
    def handle_database_error(e):
        db.session.rollback()
        logger.error("Unhandled database error: %s", e, exc_info=True)
        return error_response(PersistenceError())

    # Register blueprints
    from marketplace.blueprints import admin, cron, orders, seller, webhooks

    app.register_blueprint(orders.bp)
    app.register_blueprint(seller.bp)
    app.register_blueprint(admin.bp)
    app.register_blueprint(webhooks.bp)
    app.register_blueprint(cron.bp)

    # Setup authentication middleware (login required outside secret-auth paths)
    setup_auth_middleware(app)

    @app.cli.command('reconcile-sales')
    def reconcile_sales_command():
        """Recompute product sales counts and seller totals."""
        from marketplace.actor import Actor
        from marketplace.services.reconciliation_service import (
            run_nightly_jobs,
        )
        summary = run_nightly_jobs(actor=Actor.system(), triggered_by='cli')
        result = summary['results']['reconcile_sales_counts']
        click.echo(
            f"updated={result.get('updated')} "
            f"sellers_updated={result.get('sellers_updated')} "
            f"errors={result.get('errors')} success={result['success']}")

    # Note: Database tables are managed via Flask-Migrate
    # Use 'flask db upgrade' to create/update tables

    logger.info("Flask application initialized")
    return app
