from flask import Flask
from flask_sqlalchemy import SQLAlchemy
from flask_cors import CORS
from flask_migrate import Migrate
from flask_socketio import SocketIO
import click
from config import Config

db = SQLAlchemy()
migrate = Migrate()
allowed_origins = [
    "http://localhost:5173",
    "http://127.0.0.1:5173",
    "http://localhost:5174",
    "http://127.0.0.1:5174",
]
socketio = SocketIO(cors_allowed_origins=allowed_origins, async_mode=None)

def create_app(config_class=Config):
    flask_app = Flask(__name__)
    flask_app.config.from_object(config_class)

    db.init_app(flask_app)
    migrate.init_app(flask_app, db)
    CORS(flask_app, origins=allowed_origins)

    # Initialize Socket.IO after app is created
    socketio.init_app(flask_app, cors_allowed_origins=allowed_origins)

    # One live session engine per meeting, owned by this app
    from talking_token.services.meetings.registry import MeetingRegistry
    MeetingRegistry(flask_app)

    from talking_token.main import main
    flask_app.register_blueprint(main)

    from talking_token.api.meetings import meetings
    flask_app.register_blueprint(meetings, url_prefix='/api/meetings')

    from talking_token.socketio_events import register_socketio_handlers
    register_socketio_handlers(testing=flask_app.config.get('TESTING', False))

    @click.command('db-reset')
    def db_reset_command():
        """Drops and recreates the meeting tables."""
        import talking_token.models  # noqa: F401
        with flask_app.app_context():
            flask_app.extensions['talking_token'].clear()
            db.drop_all()
            db.create_all()
            print('Database has been reset!')

    flask_app.cli.add_command(db_reset_command)

    return flask_app
