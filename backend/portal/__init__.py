from flask import Flask
from werkzeug.exceptions import HTTPException
from flask_jwt_extended import JWTManager
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool
from sqlalchemy.orm import sessionmaker, scoped_session
from dotenv import load_dotenv
from typing import Optional, Dict, Any
import os

load_dotenv()

db_engine = None
SessionLocal = None
jwt = JWTManager()


def create_app(config: Optional[Dict[str, Any]] = None):
    global db_engine, SessionLocal
    app = Flask(__name__)

    app.config['JWT_SECRET_KEY'] = os.getenv('JWT_SECRET_KEY', 'dev-secret')
    app.config['DATABASE_URL'] = os.getenv('DATABASE_URL', 'sqlite:///dev.db')
    app.config['LOG_LEVEL'] = os.getenv('LOG_LEVEL', 'INFO')
    app.config['ATTACHMENT_ROOT'] = os.getenv('ATTACHMENT_ROOT', 'var/attachments')
    app.config['ATTACHMENT_PUBLIC_BASE_URL'] = os.getenv('ATTACHMENT_PUBLIC_BASE_URL', '/attachments')
    app.config['OWNER_EDITABLE_STATUSES'] = os.getenv('OWNER_EDITABLE_STATUSES', 'draft')
    app.config['ALLOW_SELF_TRANSITION'] = os.getenv('ALLOW_SELF_TRANSITION', 'false')
    app.config['EMAIL_API_URL'] = os.getenv('EMAIL_API_URL', 'https://api.resend.com/emails')
    app.config['EMAIL_API_KEY'] = os.getenv('EMAIL_API_KEY', '')
    app.config['EMAIL_FROM'] = os.getenv('EMAIL_FROM', 'Service Notifications <notifications@example.com>')
    app.config['ADMIN_NOTIFY_EMAIL'] = os.getenv('ADMIN_NOTIFY_EMAIL', '')

    if config:
        # allow tests or callers to override default config values
        app.config.update(config)

    from .config.logging import setup_logging
    setup_logging(app.config['LOG_LEVEL'])

    # Database
    db_url = app.config['DATABASE_URL']
    if db_url.endswith(':memory:'):
        # Ensure a single shared in-memory SQLite database across all sessions
        db_engine = create_engine(
            db_url,
            echo=False,
            future=True,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    else:
        db_engine = create_engine(db_url, echo=False, future=True)
    SessionLocal = scoped_session(sessionmaker(bind=db_engine, expire_on_commit=False, autoflush=False))

    jwt.init_app(app)

    # Collaborators; tests inject fakes through ATTACHMENT_STORE / NOTIFIER
    from .config.policy import parse_owner_editable_statuses, parse_flag
    from .services.attachments import LocalAttachmentStore
    from .services.notifications import NotificationDispatcher
    app.extensions['owner_editable_statuses'] = parse_owner_editable_statuses(app.config['OWNER_EDITABLE_STATUSES'])
    app.extensions['allow_self_transition'] = parse_flag(app.config['ALLOW_SELF_TRANSITION'])
    app.extensions['attachment_store'] = app.config.get('ATTACHMENT_STORE') or LocalAttachmentStore(
        app.config['ATTACHMENT_ROOT'], app.config['ATTACHMENT_PUBLIC_BASE_URL'])
    app.extensions['notifier'] = app.config.get('NOTIFIER') or NotificationDispatcher(
        app.config['EMAIL_API_URL'], app.config['EMAIL_API_KEY'], app.config['EMAIL_FROM'])

    from .routes.tickets import tickets_bp  # ticket workflow
    from .routes.iam import iam_bp  # roles, matrix, profiles
    app.register_blueprint(tickets_bp, url_prefix='/tickets')
    app.register_blueprint(iam_bp, url_prefix='/iam')

    @app.teardown_appcontext
    def remove_session(exc=None):
        SessionLocal.remove()

    @app.route('/healthz')
    def health():
        return {'status': 'ok'}

    from .errors import PortalError, MatrixConfigurationError

    @app.errorhandler(PortalError)
    def handle_portal_error(e):  # type: ignore
        if isinstance(e, MatrixConfigurationError):
            app.logger.error('Permission configuration error: %s %s', e.message, e.details)
        return e.to_dict(), e.http_status

    # Unified error handler producing standardized JSON shape
    @app.errorhandler(Exception)
    def handle_errors(e):  # type: ignore
        if isinstance(e, HTTPException):
            payload = {
                'error': {
                    'status': e.code,
                    'title': e.name,
                    'detail': e.description,
                }
            }
            return payload, e.code
        # Unhandled exception
        app.logger.exception('Unhandled exception')
        SessionLocal.rollback()
        return {
            'error': {
                'status': 500,
                'title': 'Internal Server Error',
                'detail': 'Unexpected error'
            }
        }, 500

    return app


def get_db():
    return SessionLocal()
