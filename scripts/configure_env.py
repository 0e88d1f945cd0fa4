"""Write or update the BlogCMS ``.env`` file.

Every setting can be passed as an option; anything left out is prompted for.
Keys already in the file that this command does not manage are left alone.
"""

from __future__ import annotations

import secrets
from enum import Enum
from pathlib import Path
from typing import Dict, Optional

import typer
from dotenv import dotenv_values, set_key
from sqlalchemy import create_engine, text
from sqlalchemy.exc import SQLAlchemyError

APP = typer.Typer(add_completion=False, help="Write the BlogCMS .env file.")

DEFAULT_ENV_PATH = Path(__file__).resolve().parents[1] / ".env"
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class StorageDriver(str, Enum):
    local = "local"
    docker_volume = "docker_volume"


def _check_log_level(value: str) -> str:
    level = value.strip().upper()
    if level not in LOG_LEVELS:
        raise typer.BadParameter(f"expected one of {', '.join(LOG_LEVELS)}")
    return level


def check_database(url: str) -> Optional[str]:
    """Return ``None`` when ``SELECT 1`` succeeds, else the driver error."""
    engine = create_engine(url, pool_pre_ping=True)
    try:
        with engine.connect() as connection:
            connection.execute(text("SELECT 1"))
    except SQLAlchemyError as exc:
        return str(exc)
    finally:
        engine.dispose()
    return None


def write_env(path: Path, values: Dict[str, str]) -> None:
    path.touch(exist_ok=True)
    for key, value in values.items():
        set_key(str(path), key, value)


@APP.command()
def configure(
    env_file: Path = typer.Option(DEFAULT_ENV_PATH, "--env-file", help="File to write."),
    database_url: str = typer.Option("sqlite:///./data.db", prompt="DATABASE_URL"),
    storage_driver: StorageDriver = typer.Option(StorageDriver.local, prompt="FILE_STORAGE_DRIVER"),
    storage_path: str = typer.Option("./uploads", prompt="FILE_STORAGE_LOCAL_PATH"),
    docker_path: str = typer.Option("/data/uploads", prompt="FILE_STORAGE_DOCKER_PATH"),
    max_file_size: int = typer.Option(10 * 1024 * 1024, min=1, prompt="MAX_FILE_SIZE (bytes)"),
    log_level: str = typer.Option("INFO", prompt="LOG_LEVEL", callback=_check_log_level),
    cors_origins: str = typer.Option("http://localhost:3000", prompt="CORS_ORIGINS (comma separated)"),
    admin_email: str = typer.Option("admin@blogcms.dev", prompt="DEFAULT_ADMIN_EMAIL"),
    secret_key: Optional[str] = typer.Option(None, help="Kept from the file, or generated, when omitted."),
    check_db: bool = typer.Option(False, "--check-db/--no-check-db", help="Connect to DATABASE_URL first."),
) -> None:
    if check_db:
        error = check_database(database_url)
        if error:
            typer.secho(f"Could not connect to {database_url}: {error}", fg=typer.colors.RED, err=True)
            raise typer.Exit(code=1)

    existing = dotenv_values(env_file) if env_file.exists() else {}
    values = {
        "SECRET_KEY": secret_key or existing.get("SECRET_KEY") or secrets.token_urlsafe(32),
        "DATABASE_URL": database_url,
        "FILE_STORAGE_DRIVER": storage_driver.value,
        "FILE_STORAGE_LOCAL_PATH": storage_path,
        "FILE_STORAGE_DOCKER_PATH": docker_path,
        "MAX_FILE_SIZE": str(max_file_size),
        "LOG_LEVEL": log_level,
        "CORS_ORIGINS": ",".join(origin.strip() for origin in cors_origins.split(",") if origin.strip()),
        "DEFAULT_ADMIN_EMAIL": admin_email.strip().lower(),
    }
    write_env(env_file, values)
    typer.secho(f"Wrote {len(values)} settings to {env_file}", fg=typer.colors.GREEN)


if __name__ == "__main__":
    APP()
