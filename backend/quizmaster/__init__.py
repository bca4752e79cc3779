from flask import Flask
from flask_sqlalchemy import SQLAlchemy
from flask_bcrypt import Bcrypt
from flask_login import LoginManager
from flask_cors import CORS
from flask_migrate import Migrate
from flask_socketio import SocketIO
import click
from config import Config

db = SQLAlchemy()
bcrypt = Bcrypt()
login_manager = LoginManager()
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
    bcrypt.init_app(flask_app)
    login_manager.init_app(flask_app)
    migrate.init_app(flask_app, db)
    CORS(flask_app, supports_credentials=True, origins=allowed_origins)

    # Initialize Socket.IO after app is created
    socketio.init_app(flask_app, cors_allowed_origins=allowed_origins)

    # Live session engine: one registry per app, wired to Socket.IO for delivery
    _init_live_engine(flask_app)

    from quizmaster.main import main
    flask_app.register_blueprint(main)

    from quizmaster.api.sessions import sessions
    flask_app.register_blueprint(sessions, url_prefix='/api/sessions')

    # Register Socket.IO event handlers
    from quizmaster.socketio_events import register_socketio_handlers
    register_socketio_handlers()

    from quizmaster.models import User

    @login_manager.user_loader
    def load_user(user_id):
        return db.session.get(User, int(user_id))

    @click.command('db-reset')
    def db_reset_command():
        """Drops, recreates, and seeds the database."""
        with flask_app.app_context():
            db.drop_all()
            db.create_all()
            seed_demo_data()
            db.session.commit()
            print('Database has been reset and seeded!')

    flask_app.cli.add_command(db_reset_command)

    return flask_app


def _init_live_engine(flask_app):
    from quizmaster.services.live.broadcaster import ConnectionRegistry, SocketBroadcaster
    from quizmaster.services.live.registry import SessionRegistry
    from quizmaster.services.live.scheduler import TickScheduler
    from quizmaster.services.live.stores import SqlQuizStore, SqlResultsStore

    cfg = flask_app.config
    connections = ConnectionRegistry()
    broadcaster = SocketBroadcaster(socketio, connections, namespace='/ws')
    registry = SessionRegistry(
        quiz_store=SqlQuizStore(),
        results_store=SqlResultsStore(flask_app),
        clock=cfg.get('LIVE_CLOCK'),
        config=cfg,
        publisher_factory=broadcaster.publisher_for,
    )
    # Background tick loops are off in TESTING; tests drive the clock and tick by hand
    scheduler = TickScheduler(
        spawn=socketio.start_background_task,
        sleep=socketio.sleep,
        interval_ms=cfg.get('TICK_INTERVAL_MS', 100),
        heartbeat_sec=cfg.get('TIMER_HEARTBEAT_SEC', 0),
        enabled=not cfg.get('TESTING') or cfg.get('ENABLE_SCHEDULER_IN_TESTS', False),
    )
    registry.on_session_created(scheduler.schedule)
    registry.on_session_ended(scheduler.cancel)

    # Expired ended sessions are swept in-process; the loop starts with the first session
    def start_cleanup(session):
        scheduler.start_cleanup(registry.cleanup, cfg.get('CLEANUP_INTERVAL_SEC', 300))

    registry.on_session_created(start_cleanup)

    flask_app.extensions['live_sessions'] = registry
    flask_app.extensions['live_connections'] = connections
    flask_app.extensions['live_broadcaster'] = broadcaster
    flask_app.extensions['live_scheduler'] = scheduler


def seed_demo_data():
    """Seed a host account and a short demo quiz."""
    from quizmaster.models import User, Quiz, Question, AnswerOption

    host = User(username='host')
    host.set_password('password')
    db.session.add(host)
    db.session.flush()

    quiz = Quiz(title='Demo Quiz', owner_id=host.id)
    samples = [
        ('What is the capital of France?', ['Paris', 'Lyon', 'Marseille', 'Nice'], 0),
        ('2 + 2 * 2 = ?', ['8', '6', '4', '2'], 1),
        ('Which planet is known as the red planet?', ['Venus', 'Jupiter', 'Mars', 'Saturn'], 2),
    ]
    for position, (text, options, correct) in enumerate(samples):
        question = Question(text=text, position=position, points=100, time_limit_seconds=30)
        for idx, option in enumerate(options):
            question.answers.append(AnswerOption(text=option, position=idx, is_correct=(idx == correct)))
        quiz.questions.append(question)
    db.session.add(quiz)
    return quiz
