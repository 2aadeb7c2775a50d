from threading import Lock

from sqlalchemy import create_engine, event, inspect, text
from sqlalchemy.orm import declarative_base, sessionmaker

from backend.core import config


def _use_immediate_transactions(sqlite_engine) -> None:
    # pysqlite defers BEGIN until the first write; take the write lock up front so
    # a read-check-write sequence runs in one serialized transaction.
    @event.listens_for(sqlite_engine, "connect")
    def _disable_pysqlite_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(sqlite_engine, "begin")
    def _begin_immediate(connection):
        connection.exec_driver_sql("BEGIN IMMEDIATE")


def build_engine(database_url: str, echo: bool = False):
    if not database_url.startswith("sqlite"):
        return create_engine(database_url, echo=echo, pool_pre_ping=True)

    # Request handlers run on a thread pool and share the SQLite file.
    sqlite_engine = create_engine(
        database_url,
        echo=echo,
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    _use_immediate_transactions(sqlite_engine)
    return sqlite_engine


engine = build_engine(config.DATABASE_URL, echo=config.DATABASE_ECHO)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)

Base = declarative_base()

_schema_lock = Lock()
_appointment_schema_checked = False


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def ensure_appointment_schema(bind=None) -> None:
    """Backfill the derived index columns and query indexes on older appointment tables."""
    global _appointment_schema_checked

    if _appointment_schema_checked:
        return

    bind = bind or engine

    with _schema_lock:
        if _appointment_schema_checked:
            return

        inspector = inspect(bind)

        if 'appointments' not in inspector.get_table_names():
            _appointment_schema_checked = True
            return

        existing_columns = {column['name'] for column in inspector.get_columns('appointments')}
        migration_steps = [
            ('date_index', 'ALTER TABLE appointments ADD COLUMN date_index VARCHAR(10)'),
            ('time_slot', 'ALTER TABLE appointments ADD COLUMN time_slot VARCHAR(5)'),
            ('hour_index', 'ALTER TABLE appointments ADD COLUMN hour_index INTEGER'),
            ('year_month', 'ALTER TABLE appointments ADD COLUMN year_month VARCHAR(7)'),
            ('original_status', 'ALTER TABLE appointments ADD COLUMN original_status VARCHAR(20)'),
            ('archived_at', 'ALTER TABLE appointments ADD COLUMN archived_at TIMESTAMP'),
        ]

        with bind.begin() as connection:
            for column_name, statement in migration_steps:
                if column_name not in existing_columns:
                    connection.execute(text(statement))
            connection.execute(
                text('CREATE INDEX IF NOT EXISTS idx_appointments_slot_status ON appointments(date_index, time_slot, status)')
            )
            connection.execute(
                text('CREATE INDEX IF NOT EXISTS idx_appointments_company_status ON appointments(company_id, status)')
            )
            connection.execute(
                text('CREATE INDEX IF NOT EXISTS idx_appointments_year_month ON appointments(year_month)')
            )

        _appointment_schema_checked = True
