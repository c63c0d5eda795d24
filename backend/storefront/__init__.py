from flask import Flask
from werkzeug.exceptions import HTTPException
from flask_jwt_extended import JWTManager
from sqlalchemy import create_engine, func, select
from sqlalchemy.exc import OperationalError, TimeoutError as PoolTimeoutError
from sqlalchemy.pool import StaticPool
from sqlalchemy.orm import sessionmaker, scoped_session
from dotenv import load_dotenv
from typing import Optional, Dict, Any, Iterable, List
import atexit
import logging

from .config.settings import load_settings
from .errors import TransientStoreError

load_dotenv()

db_engine = None
SessionLocal = None
jwt = JWTManager()

# Error kinds that are expected outcomes of authorization, not faults
QUIET_KINDS = {'denied', 'scope_violation'}


def _build_engine(db_url: str, timeout: float):
    if db_url.startswith('sqlite'):
        connect_args: Dict[str, Any] = {'timeout': timeout}
        if db_url.endswith(':memory:'):
            # Ensure a single shared in-memory SQLite database across all sessions and threads
            connect_args['check_same_thread'] = False
            return create_engine(db_url, echo=False, future=True, connect_args=connect_args, poolclass=StaticPool)
        return create_engine(db_url, echo=False, future=True, connect_args=connect_args)
    return create_engine(db_url, echo=False, future=True, pool_timeout=timeout, pool_pre_ping=True)


def lookup_user_ids(emails: Iterable[str]) -> List[int]:
    from .models.authz import User
    wanted = [e.lower() for e in emails]
    session = get_db()
    return list(session.execute(select(User.id).where(func.lower(User.email).in_(wanted))).scalars())


def create_app(config: Optional[Dict[str, Any]] = None):
    global db_engine, SessionLocal
    app = Flask(__name__)

    app.config.update(load_settings())
    if config:
        # allow tests or callers to override default config values
        app.config.update(config)

    level = logging.getLevelName(str(app.config.get('LOG_LEVEL', 'INFO')).upper())
    if isinstance(level, int):
        app.logger.setLevel(level)
        logging.getLogger('storefront').setLevel(level)

    # Database
    db_engine = _build_engine(app.config['DATABASE_URL'], float(app.config['STORE_TIMEOUT_SECONDS']))
    SessionLocal = scoped_session(sessionmaker(bind=db_engine, expire_on_commit=False, autoflush=False))

    jwt.init_app(app)

    # Authorization core: cache -> resolver -> gate, one set per app
    from .authz import AuthorizationGate, PermissionCache, PermissionResolver
    cache = PermissionCache(
        ttl_seconds=float(app.config['PERMISSION_CACHE_TTL_SECONDS']),
        max_entries=app.config.get('PERMISSION_CACHE_MAX_ENTRIES'),
    )
    resolver = PermissionResolver(get_db, cache)
    app.extensions['permission_cache'] = cache
    app.extensions['permission_resolver'] = resolver
    app.extensions['authz_gate'] = AuthorizationGate(
        resolver,
        override_emails=app.config.get('BREAK_GLASS_EMAILS') or (),
        lookup_ids=lookup_user_ids,
    )

    from .services.order_lifecycle import get_order_fsm
    fsm = get_order_fsm(extended=bool(app.config['ORDER_EXTENDED_STATES']))
    app.extensions['order_fsm'] = fsm

    from .routes.iam import iam_bp
    from .routes.orders import orders_bp
    from .routes.products import products_bp
    app.register_blueprint(iam_bp, url_prefix='/iam')
    app.register_blueprint(orders_bp, url_prefix='/orders')
    app.register_blueprint(products_bp, url_prefix='/products')

    @app.route('/healthz')
    def health():
        return {'status': 'ok'}

    # Unified error handler producing standardized JSON shape
    @app.errorhandler(Exception)
    def handle_errors(e):  # type: ignore
        if isinstance(e, (OperationalError, PoolTimeoutError)):
            app.logger.warning('Data store unavailable: %s', e)
            SessionLocal.rollback()
            e = TransientStoreError()
        if isinstance(e, HTTPException):
            payload = {
                'error': {
                    'status': e.code,
                    'title': e.name,
                    'detail': e.description,
                }
            }
            kind = getattr(e, 'kind', None)
            if kind:
                payload['error']['kind'] = kind
                payload['error'].update(e.extra())
                if kind in QUIET_KINDS:
                    app.logger.info('%s: %s', kind, e.description)
            return payload, e.code
        # Unhandled exception; the session may hold a failed flush
        SessionLocal.rollback()
        app.logger.exception('Unhandled exception')
        return {
            'error': {
                'status': 500,
                'title': 'Internal Server Error',
                'detail': 'Unexpected error'
            }
        }, 500

    @app.teardown_appcontext
    def remove_session(exc=None):  # type: ignore
        SessionLocal.remove()

    app.extensions['order_automation'] = None
    if app.config['ORDER_AUTOMATION_ENABLED']:
        from .services.order_automation import build_scheduler
        scheduler = build_scheduler(
            SessionLocal,
            fsm,
            app.config.get('ORDER_AUTOMATION_DWELL'),
            float(app.config['ORDER_AUTOMATION_INTERVAL_SECONDS']),
            extended=bool(app.config['ORDER_EXTENDED_STATES']),
        )
        scheduler.start()
        atexit.register(scheduler.stop)
        app.extensions['order_automation'] = scheduler

    return app


def get_db():
    return SessionLocal()
