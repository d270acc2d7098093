import logging
import os
from dotenv import load_dotenv
from threading import Lock

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import declarative_base, sessionmaker


load_dotenv()
logger = logging.getLogger(__name__)
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./medicloudhub.db")


def build_engine(database_url: str) -> Engine:
    connect_args = {}
    if database_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    return create_engine(database_url, connect_args=connect_args)


def build_session_factory(bind: Engine) -> sessionmaker:
    return sessionmaker(
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
        bind=bind,
    )


engine = build_engine(DATABASE_URL)

SessionLocal = build_session_factory(engine)

Base = declarative_base()

_schema_lock = Lock()
_appointment_schema_checked = False
_conversation_schema_checked = False


def ensure_appointment_schema(bind: Engine | None = None) -> None:
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
            ('modality', "ALTER TABLE appointments ADD COLUMN modality VARCHAR(20) DEFAULT 'IN_PERSON'"),
            ('notes', 'ALTER TABLE appointments ADD COLUMN notes VARCHAR(600)'),
            ('updated_at', 'ALTER TABLE appointments ADD COLUMN updated_at TIMESTAMP'),
            ('completed_at', 'ALTER TABLE appointments ADD COLUMN completed_at TIMESTAMP'),
        ]

        with bind.begin() as connection:
            for column_name, statement in migration_steps:
                if column_name not in existing_columns:
                    connection.execute(text(statement))
            connection.execute(
                text('CREATE INDEX IF NOT EXISTS idx_appointments_patient_scheduled ON appointments(patient_id, scheduled_at)')
            )
            connection.execute(
                text('CREATE INDEX IF NOT EXISTS idx_appointments_doctor_scheduled ON appointments(doctor_id, scheduled_at)')
            )
            connection.execute(
                text('CREATE INDEX IF NOT EXISTS idx_appointments_status_scheduled ON appointments(status, scheduled_at)')
            )

        _appointment_schema_checked = True


def ensure_conversation_schema(bind: Engine | None = None) -> None:
    global _conversation_schema_checked

    if _conversation_schema_checked:
        return

    bind = bind or engine

    with _schema_lock:
        if _conversation_schema_checked:
            return

        inspector = inspect(bind)

        if 'conversations' not in inspector.get_table_names():
            _conversation_schema_checked = True
            return

        try:
            with bind.begin() as connection:
                # Tables created before the pair constraint existed still need it.
                connection.execute(
                    text(
                        'CREATE UNIQUE INDEX IF NOT EXISTS uq_conversations_patient_doctor '
                        'ON conversations(patient_id, doctor_id)'
                    )
                )
        except IntegrityError:
            logger.error(
                'conversations holds duplicate (patient_id, doctor_id) pairs; '
                'merge them and restart to add uq_conversations_patient_doctor'
            )

        if 'messages' in inspector.get_table_names():
            with bind.begin() as connection:
                connection.execute(
                    text('CREATE INDEX IF NOT EXISTS idx_messages_conversation_created ON messages(conversation_id, created_at)')
                )

        _conversation_schema_checked = True
