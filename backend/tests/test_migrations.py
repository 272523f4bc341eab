import tempfile
from pathlib import Path

from sqlalchemy import create_engine, inspect, text

import app.config as config_module
from alembic import command
from alembic.config import Config
from app.main import REQUIRED_TABLES

ALEMBIC_INI = Path(__file__).resolve().parents[1] / "alembic.ini"


def test_alembic_upgrade_head_on_fresh_sqlite_db():
    original_database_url = config_module.settings.database_url
    try:
        with tempfile.TemporaryDirectory() as tmpdir:
            db_path = Path(tmpdir) / "fresh.db"
            database_url = f"sqlite:///{db_path}"

            config_module.settings.database_url = database_url

            command.upgrade(Config(str(ALEMBIC_INI)), "head")

            engine = create_engine(database_url, connect_args={"check_same_thread": False})
            try:
                tables = set(inspect(engine).get_table_names())
                assert set(REQUIRED_TABLES).issubset(tables)

                with engine.connect() as conn:
                    rows = conn.execute(text("SELECT level, COUNT(*) FROM certification_criteria GROUP BY level"))
                    counts = dict(rows.all())
                assert counts == {"bronze": 3, "silver": 4, "gold": 5}
            finally:
                engine.dispose()
    finally:
        config_module.settings.database_url = original_database_url
