"""Congregation Attendance - Application Factory."""
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
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=["500 per day", "100 per hour"]
)

def create_app(config_name: str = None) -> Flask:
    """Application factory pattern."""
    app = Flask(__name__)

    # Load configuration
    from congregation.config import get_config
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

    # Notification dispatcher
    setup_notifier(app)

    # Register blueprints
    register_blueprints(app)

    # Register error handlers
    register_error_handlers(app)

    # Setup database
    setup_database(app)

    # Add CLI commands
    register_commands(app)

    # Add health check
    @app.route('/health')
    def health_check():
        return jsonify({
            'status': 'healthy',
            'service': 'Congregation Attendance',
            'version': '1.0.0'
        })

    return app

def register_blueprints(app: Flask) -> None:
    """Register all application blueprints."""
    from congregation.api.attendance import attendance_bp
    from congregation.api.followups import followups_bp
    from congregation.api.public import public_bp

    app.register_blueprint(attendance_bp, url_prefix='/api/attendance')
    app.register_blueprint(followups_bp, url_prefix='/api/followups')

    # Unauthenticated visitor flow
    app.register_blueprint(public_bp, url_prefix='/api/public')

def register_error_handlers(app: Flask) -> None:
    """Register error handlers."""
    from congregation.utils.errors import AttendanceError
    from congregation.utils.helpers import handle_error, error_response
    from werkzeug.exceptions import HTTPException

    @app.errorhandler(AttendanceError)
    def attendance_error(error):
        db.session.rollback()
        return error_response(error.message, error.status_code, **error.payload)

    @app.errorhandler(404)
    def not_found(error):
        return handle_error(error, 404)

    @app.errorhandler(500)
    def internal_error(error):
        db.session.rollback()
        return handle_error(error, 500)

    @app.errorhandler(HTTPException)
    def handle_exception(e):
        return handle_error(e, e.code)

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
    level = getattr(logging, app.config.get('LOG_LEVEL', 'INFO'))
    logging.getLogger('congregation').setLevel(level)

    if not app.debug and not app.testing:
        log_file = app.config.get('LOG_FILE', 'logs/app.log')
        log_dir = os.path.dirname(log_file)
        if log_dir and not os.path.exists(log_dir):
            os.makedirs(log_dir)

        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(logging.Formatter(
            '%(asctime)s %(levelname)s %(name)s: %(message)s [in %(pathname)s:%(lineno)d]'
        ))
        file_handler.setLevel(level)
        app.logger.addHandler(file_handler)
        logging.getLogger('congregation').addHandler(file_handler)

        app.logger.setLevel(level)
        app.logger.info('Congregation Attendance startup')

def setup_notifier(app: Flask) -> None:
    """Attach the notification dispatcher to the app."""
    from congregation.services.notification_service import NotificationService

    app.extensions['notifier'] = NotificationService.from_config(app.config)

def setup_database(app: Flask) -> None:
    """Setup database connections."""
    with app.app_context():
        # Import all models so metadata is complete
        from congregation.models import (
            Member, MemberRole, Department,
            Service, AttendanceRecord,
            FollowUp, ContactAttempt,
            VisitorRecord, VisitorAttendance,
            AbsenceEvaluation, MemberAbsence
        )

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

    @app.cli.command('evaluate-absences')
    @click.option('--service-id', type=int, required=True, help='Service to evaluate')
    @click.option('--date', 'day', type=click.DateTime(formats=['%Y-%m-%d']),
                  default=None, help='Service date (defaults to today)')
    def evaluate_absences(service_id, day):
        """Record absences for a service occurrence and escalate follow-ups."""
        from congregation.services.absence_service import AbsenceService
        from congregation.utils.clock import local_today
        from congregation.utils.errors import AttendanceError

        target = day.date() if day else local_today()
        try:
            report = AbsenceService.evaluate_absences(service_id, target)
        except AttendanceError as e:
            raise click.ClickException(e.message)

        if report.already_evaluated:
            click.echo(f'Service {service_id} on {target} was already evaluated.')
        click.echo(
            f'Expected {report.total_expected}, attended {report.total_attended}, '
            f'absent {report.total_absent}, follow-ups {len(report.follow_up_ids)}'
        )
