"""Rollcall attendance service - Application Factory."""
import logging
import os

from flask import Flask, jsonify
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate
from flask_sqlalchemy import SQLAlchemy

__version__ = '1.0.0'

# Initialize extensions
db = SQLAlchemy()
migrate = Migrate()
limiter = Limiter(key_func=get_remote_address)


def create_app(config_name: str = None, **overrides) -> Flask:
    """Application factory pattern."""
    app = Flask(__name__)

    # Load configuration
    from rollcall.config import get_config
    app.config.from_object(get_config(config_name))
    app.config.update(overrides)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)
    limiter.init_app(app)

    # Configure CORS
    CORS(app, origins=app.config.get('CORS_ORIGINS', ["*"]))

    # Setup logging
    setup_logging(app)

    # Setup ledger and services
    setup_services(app)

    # Register blueprints
    register_blueprints(app)

    # Register error handlers
    register_error_handlers(app)

    # Add CLI commands
    register_commands(app)

    # Add health check
    @app.route('/health')
    def health_check():
        services = app.extensions['rollcall']
        return jsonify({
            'status': 'healthy',
            'service': 'Rollcall',
            'version': __version__,
            'ledger': services.store.backend
        })

    return app


def setup_services(app: Flask) -> None:
    """Create the ledger store and wire the attendance services."""
    from rollcall.services import build_services
    from rollcall.storage import create_store

    with app.app_context():
        # Import tables so create_all sees them
        from rollcall.storage import tables  # noqa: F401
        if app.config['LEDGER_BACKEND'] == 'sql':
            db.create_all()

    store = create_store(app)
    services = build_services(app.config, store)
    app.extensions['rollcall'] = services
    services.sessions.restore()


def register_blueprints(app: Flask) -> None:
    """Register all application blueprints."""
    from rollcall.api.sessions import sessions_bp
    from rollcall.api.participants import participants_bp
    from rollcall.api.attendance import attendance_bp

    app.register_blueprint(sessions_bp, url_prefix='/api/sessions')
    app.register_blueprint(participants_bp, url_prefix='/api/participants')
    app.register_blueprint(attendance_bp, url_prefix='/api/attendance')


def register_error_handlers(app: Flask) -> None:
    """Register error handlers."""
    from werkzeug.exceptions import HTTPException
    from rollcall.utils.errors import RollcallError
    from rollcall.utils.helpers import error_response, handle_error

    @app.errorhandler(RollcallError)
    def handle_rollcall_error(error):
        if error.status_code >= 500:
            app.logger.error('%s: %s', error.code, error.message)
        else:
            app.logger.warning('%s: %s', error.code, error.message)
        return error_response(error.message, error.status_code, error.code, error.details)

    @app.errorhandler(HTTPException)
    def handle_exception(e):
        return handle_error(e, e.code)

    @app.errorhandler(500)
    def internal_error(error):
        db.session.rollback()
        return handle_error(error, 500)


def setup_logging(app: Flask) -> None:
    """Setup application logging."""
    level = getattr(logging, app.config.get('LOG_LEVEL', 'INFO'), logging.INFO)
    logging.getLogger('rollcall').setLevel(level)

    if not app.debug and not app.testing:
        log_file = app.config.get('LOG_FILE', 'logs/rollcall.log')
        log_dir = os.path.dirname(log_file)
        if log_dir and not os.path.exists(log_dir):
            os.makedirs(log_dir)

        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(logging.Formatter(
            '%(asctime)s %(levelname)s: %(message)s [in %(pathname)s:%(lineno)d]'
        ))
        file_handler.setLevel(level)
        app.logger.addHandler(file_handler)
        logging.getLogger('rollcall').addHandler(file_handler)

        app.logger.setLevel(level)
        app.logger.info('Rollcall startup')


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

    @app.cli.command('start-session')
    @click.argument('class_id')
    @click.argument('issuer_id')
    @click.option('--interval', default=None, type=int, help='Rotation interval in seconds')
    def start_session(class_id, issuer_id, interval):
        """Start an attendance session and print its first token."""
        services = app.extensions['rollcall']
        session = services.sessions.start_session(
            class_id,
            issuer_id,
            interval or app.config['DEFAULT_ROTATION_SECONDS']
        )
        window = session.current_window
        click.echo(f'Session {session.session_id} started for {class_id}')
        click.echo(f'Token: {window.token_string}  PIN: {window.pin}')

    @app.cli.command('export')
    @click.argument('csv_path', type=click.Path(dir_okay=False, writable=True))
    @click.option('--session', 'session_id', default=None, help='Only this session')
    @click.option('--class', 'class_id', default=None, help='Only this class')
    def export(csv_path, session_id, class_id):
        """Export attendance records to a CSV file."""
        from rollcall.models import Scope

        services = app.extensions['rollcall']
        scope = Scope.parse(session_id=session_id, class_id=class_id)
        export = services.moderation.export(scope)
        with open(csv_path, 'w', newline='', encoding='utf-8') as f:
            f.write(export.csv)
        click.echo(f'Exported {export.count} records to {csv_path}')
