# File: backend/presence/__init__.py
"""Verified Presence - Application Factory."""
import logging
import os
from flask import Flask, jsonify
from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate
from flask_jwt_extended import JWTManager
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address

# Initialize extensions
db = SQLAlchemy()
migrate = Migrate()
jwt = JWTManager()
limiter = Limiter(key_func=get_remote_address)


def create_app(config_name: str = None) -> Flask:
    """Application factory pattern."""
    app = Flask(__name__)

    # Load configuration
    from presence.config import get_config
    config_class = get_config(config_name)
    app.config.from_object(config_class)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)
    jwt.init_app(app)
    limiter.init_app(app)

    # Configure CORS
    CORS(app, origins=app.config.get('CORS_ORIGINS', ["*"]))

    # Setup logging
    setup_logging(app)

    # Register blueprints
    register_blueprints(app)

    # Register error handlers
    register_error_handlers(app)

    # Setup database and the attendance engine
    setup_database(app)
    setup_engine(app)

    # Add CLI commands
    register_commands(app)

    # Add health check
    @app.route('/health')
    def health_check():
        return jsonify({
            'status': 'healthy',
            'service': 'Verified Presence',
            'version': '1.0.0'
        })

    return app


def register_blueprints(app: Flask) -> None:
    """Register all application blueprints."""
    from presence.api.attendance import attendance_bp
    from presence.api.faces import faces_bp

    app.register_blueprint(attendance_bp, url_prefix='/api/attendance')
    app.register_blueprint(faces_bp, url_prefix='/api/faces')


def register_error_handlers(app: Flask) -> None:
    """Register error handlers."""
    from presence.services.errors import AttendanceError
    from presence.utils.helpers import attendance_error_response, handle_error
    from werkzeug.exceptions import HTTPException

    @app.errorhandler(AttendanceError)
    def handle_attendance_error(error):
        return attendance_error_response(error)

    @app.errorhandler(HTTPException)
    def handle_exception(e):
        return handle_error(e.description, e.code)

    @app.errorhandler(500)
    def internal_error(error):
        db.session.rollback()
        app.logger.error("Unhandled error: %s", error)
        return handle_error("Internal server error", 500)

    # JWT error handlers
    @jwt.expired_token_loader
    def expired_token_callback(jwt_header, jwt_payload):
        return jsonify({
            'error': True,
            'message': 'Token has expired',
            'status_code': 401
        }), 401

    @jwt.invalid_token_loader
    def invalid_token_callback(error):
        return jsonify({
            'error': True,
            'message': 'Invalid token',
            'status_code': 401
        }), 401

    @jwt.unauthorized_loader
    def missing_token_callback(error):
        return jsonify({
            'error': True,
            'message': 'Authorization token required',
            'status_code': 401
        }), 401


def setup_logging(app: Flask) -> None:
    """Setup application logging."""
    level = getattr(logging, app.config.get('LOG_LEVEL', 'INFO'), logging.INFO)

    # Service modules log under the package logger
    package_logger = logging.getLogger('presence')
    package_logger.setLevel(level)

    if not app.debug and not app.testing:
        log_file = app.config.get('LOG_FILE', 'logs/app.log')
        log_dir = os.path.dirname(log_file)
        if log_dir and not os.path.exists(log_dir):
            os.makedirs(log_dir)

        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(logging.Formatter(
            '%(asctime)s %(levelname)s: %(message)s [in %(pathname)s:%(lineno)d]'
        ))
        file_handler.setLevel(level)
        app.logger.addHandler(file_handler)
        if file_handler not in package_logger.handlers:
            package_logger.addHandler(file_handler)

        app.logger.setLevel(level)
        app.logger.info('Verified Presence startup')


def setup_database(app: Flask) -> None:
    """Setup database connections."""
    with app.app_context():
        # Import all models
        from presence.models import (  # noqa: F401
            AttendanceSessionModel, AttendanceRecord, FaceTemplate
        )


def setup_engine(app: Flask) -> None:
    """Build the session store and marking workflow and restore stored sessions."""
    from sqlalchemy import inspect
    from presence.services.face_recognition_service import create_verifier
    from presence.services.marking_service import VerifiedMarkingWorkflow
    from presence.services.persistence_service import SQLAlchemySessionJournal, rehydrate_store
    from presence.services.session_service import SessionStore

    journal = SQLAlchemySessionJournal(db)
    store = SessionStore(journal=journal)
    workflow = VerifiedMarkingWorkflow(
        store,
        create_verifier(app.config),
        require_location=app.config.get('REQUIRE_LOCATION', False)
    )

    app.extensions['session_journal'] = journal
    app.extensions['session_store'] = store
    app.extensions['marking_workflow'] = workflow

    with app.app_context():
        if inspect(db.engine).has_table('attendance_sessions'):
            rehydrate_store(store, journal)
        else:
            app.logger.info("Attendance tables not created yet; starting with an empty store")


def register_commands(app: Flask) -> None:
    """Register CLI commands."""
    import click

    @app.cli.command('init-db')
    @click.option('--drop', is_flag=True, help='Drop existing tables')
    def init_db(drop):
        """Initialize the database."""
        if drop:
            db.drop_all()
            click.echo('Dropped all tables.')

        db.create_all()
        click.echo('Created all tables.')

    @app.cli.command('list-active')
    def list_active():
        """List open attendance sessions."""
        sessions = app.extensions['session_store'].active_sessions()
        if not sessions:
            click.echo('No active sessions.')
            return

        for session in sessions:
            click.echo(
                f"{session.id}  course={session.config.course_id}  "
                f"subject={session.config.subject}  present={len(session.attendance())}"
            )

    @app.cli.command('close-session')
    @click.argument('session_id')
    def close_session(session_id):
        """Close an attendance session."""
        from presence.services.errors import SessionNotFound

        try:
            session = app.extensions['session_store'].close_session(session_id)
        except SessionNotFound as e:
            raise click.ClickException(e.message)

        click.echo(f'Closed session {session.id} at {session.ended_at.isoformat()}')
