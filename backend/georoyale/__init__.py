from flask import Flask, jsonify
from flask_sqlalchemy import SQLAlchemy
from flask_bcrypt import Bcrypt
from flask_login import LoginManager
from flask_cors import CORS
from flask_migrate import Migrate
from flask_socketio import SocketIO
import logging
import click
from config import Config

db = SQLAlchemy()
bcrypt = Bcrypt()
login_manager = LoginManager()
migrate = Migrate()
socketio = SocketIO(async_mode=None)


def _configure_logging(flask_app):
    level_name = str(flask_app.config.get('LOG_LEVEL', 'INFO')).upper()
    level = getattr(logging, level_name, logging.INFO)
    if not flask_app.config.get('TESTING'):
        logging.basicConfig(level=level, format='%(asctime)s %(levelname)s %(name)s: %(message)s')
    logging.getLogger('georoyale').setLevel(level)


def create_app(config_class=Config):
    flask_app = Flask(__name__)
    flask_app.config.from_object(config_class)
    _configure_logging(flask_app)

    allowed_origins = flask_app.config.get('CORS_ORIGINS') or []

    db.init_app(flask_app)
    bcrypt.init_app(flask_app)
    login_manager.init_app(flask_app)
    migrate.init_app(flask_app, db)
    CORS(flask_app, supports_credentials=True, origins=allowed_origins)

    # Initialize Socket.IO after app is created
    socketio.init_app(flask_app, cors_allowed_origins=allowed_origins)

    # In-memory battle royale registry, one per app
    from georoyale.services.battle_royale import BattleRoyaleManager, RoundScheduler, SessionNotifier
    from georoyale.services.locations import random_locations
    scheduler_enabled = (not flask_app.config.get('TESTING')) or bool(flask_app.config.get('ENABLE_SCHEDULER_IN_TESTS'))
    flask_app.extensions['battle_royale'] = BattleRoyaleManager.from_config(
        flask_app.config,
        notifier=SessionNotifier(socketio),
        scheduler=RoundScheduler(socketio, enabled=scheduler_enabled),
        location_provider=random_locations,
    )

    # Import and register blueprints here
    from georoyale.main import main
    flask_app.register_blueprint(main)

    from georoyale.api.battle_royale import battle_royale
    flask_app.register_blueprint(battle_royale, url_prefix='/api/battle-royale')

    from georoyale.errors import BattleRoyaleError

    @flask_app.errorhandler(BattleRoyaleError)
    def handle_battle_royale_error(exc):
        return jsonify({'error': exc.message}), exc.status_code

    # Register Socket.IO event handlers on the initialized socketio instance
    from georoyale.socketio_events import register_socketio_handlers
    register_socketio_handlers()

    # Flask-Login user loader
    from georoyale.models import User

    @login_manager.user_loader
    def load_user(user_id):
        return db.session.get(User, int(user_id))

    @login_manager.unauthorized_handler
    def unauthorized():
        return jsonify({'error': 'Authentication required'}), 401

    @click.command('db-reset')
    def db_reset_command():
        """Drops, recreates, and seeds the database."""
        from georoyale.services.locations import seed_locations
        with flask_app.app_context():
            db.drop_all()
            db.create_all()

            # Seed users
            users = ['testuser1', 'testuser2', 'testuser3']
            for u in users:
                user = User(username=u)
                user.set_password('password')
                db.session.add(user)

            db.session.commit()
            seeded = seed_locations()
            print(f'Database has been reset and seeded with {len(users)} users and {seeded} locations!')

    flask_app.cli.add_command(db_reset_command)

    return flask_app
