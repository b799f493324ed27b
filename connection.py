from sqlalchemy import event
from sqlalchemy.engine import create_engine, Engine
from sqlalchemy.orm import sessionmaker
from typing import Optional
import sqlalchemy.exc
import logging

import config
from models.tables import Base, Metadata


SCHEMA_VERSION = "1"
SCHEMA_VERSION_KEY = "schema_version"

# execution option: take the write lock when the transaction starts
IMMEDIATE = "sqlite_immediate"

logger = logging.getLogger(__name__)


class SchemaVersionError(RuntimeError):
    pass


def _emit_begin(engine: Engine):
    @event.listens_for(engine, "connect")
    def do_connect(dbapi_connection, connection_record):
        # stop pysqlite from issuing its own deferred BEGIN
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def do_begin(conn):
        if conn.get_execution_options().get(IMMEDIATE):
            conn.exec_driver_sql("BEGIN IMMEDIATE")
        else:
            conn.exec_driver_sql("BEGIN")


def connect(db_path: Optional[str] = None) -> Engine:
    path = db_path or config.HELIUM_DB_PATH
    try:
        engine = create_engine(f"sqlite:///{path}", connect_args={"timeout": 1})
        _emit_begin(engine)
        Base.metadata.create_all(engine)
    except sqlalchemy.exc.OperationalError as e:
        raise ConnectionError(f"Unable to open database {path}: {e}") from e

    check_schema_version(engine)
    logger.debug("Opened database %s", path)
    return engine


def check_schema_version(engine: Engine):
    """
    Stamps a fresh database with the current schema version, or refuses to use one written by another version.
    :raises SchemaVersionError: on mismatch
    """
    session = sessionmaker(engine)
    with session.begin() as sess:
        row = sess.get(Metadata, SCHEMA_VERSION_KEY)
        if row is None:
            sess.add(Metadata(key=SCHEMA_VERSION_KEY, value=SCHEMA_VERSION))
        elif row.value != SCHEMA_VERSION:
            raise SchemaVersionError(f"Database schema version {row.value} does not match expected {SCHEMA_VERSION}")
