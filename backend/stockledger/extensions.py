# Overview: Flask extension instances for the database and migrations.

from flask_migrate import Migrate
from flask_sqlalchemy import SQLAlchemy
from sqlalchemy import event

db = SQLAlchemy()
migrate = Migrate()


def configure_sqlite(engine) -> None:
    """
    Make SQLite honour foreign keys and real SAVEPOINTs.

    pysqlite defers BEGIN until the first DML statement, so a SAVEPOINT issued
    after a plain SELECT would open (and its RELEASE commit) the outer
    transaction. Let SQLAlchemy emit BEGIN itself instead.
    """
    if engine.dialect.name != "sqlite":
        return

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")
