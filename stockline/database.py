"""Database configuration and initialization."""
from sqlalchemy import create_engine, BigInteger, Integer
from sqlalchemy.orm import scoped_session, sessionmaker, declarative_base
from sqlalchemy.pool import StaticPool

# Create SQLAlchemy base
Base = declarative_base()

# BIGINT ids everywhere except SQLite, where only INTEGER PRIMARY KEY autoincrements
IdType = BigInteger().with_variant(Integer, 'sqlite')

# Global session and engine
engine = None
db_session = None


def init_db(config):
    """Initialize database connection from a config mapping."""
    global engine, db_session

    database_uri = config['SQLALCHEMY_DATABASE_URI']
    echo = config.get('SQLALCHEMY_ECHO', False)
    if database_uri.startswith('sqlite'):
        # One shared connection so an in-memory database survives across sessions
        engine = create_engine(
            database_uri,
            echo=echo,
            connect_args={'check_same_thread': False},
            poolclass=StaticPool
        )
    else:
        engine = create_engine(
            database_uri,
            echo=echo,
            pool_pre_ping=True,  # Enable connection health checks
            pool_size=10,
            max_overflow=20
        )

    db_session = scoped_session(
        sessionmaker(autocommit=False, autoflush=False, bind=engine)
    )

    Base.query = db_session.query_property()
    return engine


def create_all():
    """Create all tables (used by tests and first-run setup)."""
    # Import models so they register on Base.metadata
    import stockline.models  # noqa: F401
    Base.metadata.create_all(bind=engine)


def drop_all():
    """Drop all tables."""
    import stockline.models  # noqa: F401
    Base.metadata.drop_all(bind=engine)


def get_session():
    """Get database session."""
    return db_session
