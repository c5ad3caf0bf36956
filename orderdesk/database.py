"""Database configuration and initialization."""
from sqlalchemy import create_engine, event, BigInteger, Integer
from sqlalchemy.orm import scoped_session, sessionmaker, declarative_base

# Create SQLAlchemy base
Base = declarative_base()

# SQLite only autoincrements INTEGER PRIMARY KEY columns
IdType = BigInteger().with_variant(Integer(), 'sqlite')

# Global session and engine
engine = None
db_session = None


def _build_engine(database_uri: str, echo: bool = False):
    """Create the engine, adding SQLite-specific locking when needed."""
    if database_uri.startswith('sqlite'):
        sqlite_engine = create_engine(
            database_uri,
            echo=echo,
            connect_args={'check_same_thread': False, 'timeout': 30},
        )

        # pysqlite defers BEGIN until the first write; take the write lock up front
        # so check-and-decrement sequences serialize like SELECT ... FOR UPDATE.
        @event.listens_for(sqlite_engine, 'connect')
        def _on_connect(dbapi_connection, connection_record):
            dbapi_connection.isolation_level = None
            cursor = dbapi_connection.cursor()
            cursor.execute('PRAGMA foreign_keys=ON')
            cursor.close()

        @event.listens_for(sqlite_engine, 'begin')
        def _on_begin(conn):
            conn.exec_driver_sql('BEGIN IMMEDIATE')

        return sqlite_engine

    return create_engine(
        database_uri,
        echo=echo,
        pool_pre_ping=True,  # Enable connection health checks
        pool_size=10,
        max_overflow=20
    )


def init_engine(database_uri: str, echo: bool = False):
    """Create engine and scoped session outside of a Flask app (CLI, tests)."""
    global engine, db_session

    if db_session is not None:
        db_session.remove()
    if engine is not None:
        engine.dispose()

    engine = _build_engine(database_uri, echo)
    db_session = scoped_session(
        sessionmaker(autocommit=False, autoflush=False, bind=engine)
    )
    Base.query = db_session.query_property()
    return engine


def init_db(app):
    """Initialize database connection."""
    init_engine(
        app.config['SQLALCHEMY_DATABASE_URI'],
        echo=app.config.get('SQLALCHEMY_ECHO', False)
    )

    # Register teardown
    @app.teardown_appcontext
    def shutdown_session(exception=None):
        """Close database session and rollback on error."""
        if db_session is None:
            return
        if exception:
            db_session.rollback()
        db_session.remove()


def create_all():
    """Create all tables registered on Base."""
    # Import models so every table is registered on the metadata
    import orderdesk.models  # noqa: F401
    Base.metadata.create_all(bind=engine)


def drop_all():
    """Drop all tables registered on Base."""
    import orderdesk.models  # noqa: F401
    Base.metadata.drop_all(bind=engine)


def get_session():
    """Get database session."""
    return db_session
