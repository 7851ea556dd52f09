import logging
import sys
from logging.config import fileConfig
from pathlib import Path

from alembic import context

# Project modules live one directory up
BASE_DIR = Path(__file__).resolve().parents[1]
if str(BASE_DIR) not in sys.path:
    sys.path.insert(0, str(BASE_DIR))

from config import Settings, get_settings  # noqa: E402
from database import Base, build_engine  # noqa: E402
import models  # noqa: E402,F401  registers the mapped tables


config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

logger = logging.getLogger("alembic.env")

target_metadata = Base.metadata


def _settings() -> Settings:
    """Application settings, with ``alembic -x url=...`` taking precedence."""
    settings = get_settings()
    override = context.get_x_argument(as_dictionary=True).get("url")
    if override:
        settings = Settings(
            database_url=override,
            timezone=settings.timezone,
            session_secret=settings.session_secret,
            session_max_age_hours=settings.session_max_age_hours,
            bcrypt_rounds=settings.bcrypt_rounds,
        )
    return settings


def run_migrations_offline(settings: Settings) -> None:
    context.configure(
        url=settings.database_url,
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        render_as_batch=settings.database_url.startswith("sqlite"),
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online(settings: Settings) -> None:
    engine = build_engine(settings)
    try:
        with engine.connect() as connection:
            context.configure(
                connection=connection,
                target_metadata=target_metadata,
                render_as_batch=connection.dialect.name == "sqlite",
                compare_type=True,
            )
            with context.begin_transaction():
                context.run_migrations()
    finally:
        engine.dispose()
    logger.info(f"migrations_applied: url={engine.url.render_as_string()}")


if context.is_offline_mode():
    run_migrations_offline(_settings())
else:
    run_migrations_online(_settings())
