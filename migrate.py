#!/usr/bin/env python3
"""
Script para gestionar migraciones de base de datos con Alembic.
"""
import argparse
import logging
from pathlib import Path

from alembic.config import Config
from alembic import command
from app.core.config import settings

root_dir = Path(__file__).parent
logger = logging.getLogger("migrate")


def get_alembic_config() -> Config:
    """Configuración de Alembic con la URL de la base de datos de settings."""
    alembic_cfg = Config(str(root_dir / "alembic.ini"))
    alembic_cfg.set_main_option("script_location", str(root_dir / "migrations"))
    alembic_cfg.set_main_option("sqlalchemy.url", settings.database_url)
    return alembic_cfg


def create_migration(message: str):
    """Crear nueva migración (autogenerate)."""
    command.revision(get_alembic_config(), autogenerate=True, message=message)
    logger.info(f"Migración creada: {message}")


def run_migrations(revision: str = "head"):
    """Ejecutar migraciones pendientes."""
    command.upgrade(get_alembic_config(), revision)
    logger.info(f"Migraciones ejecutadas hasta {revision}")


def rollback_migration(revision: str = "-1"):
    """Rollback hasta la revisión indicada."""
    command.downgrade(get_alembic_config(), revision)
    logger.info(f"Rollback ejecutado hasta {revision}")


def stamp(revision: str = "head"):
    """Marcar la base como migrada sin ejecutar (bases creadas con create_all)."""
    command.stamp(get_alembic_config(), revision)
    logger.info(f"Base marcada en {revision}")


def main(argv=None):
    parser = argparse.ArgumentParser(description="Migraciones de la base de caixa")
    sub = parser.add_subparsers(dest="action", required=True)

    create = sub.add_parser("create", help="Crear migración")
    create.add_argument("message")

    upgrade = sub.add_parser("upgrade", help="Ejecutar migraciones")
    upgrade.add_argument("revision", nargs="?", default="head")

    downgrade = sub.add_parser("downgrade", help="Rollback")
    downgrade.add_argument("revision", nargs="?", default="-1")

    stamp_parser = sub.add_parser("stamp", help="Marcar revisión sin ejecutar")
    stamp_parser.add_argument("revision", nargs="?", default="head")

    sub.add_parser("history", help="Ver historial")
    sub.add_parser("current", help="Ver revisión actual")

    args = parser.parse_args(argv)
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(message)s")

    if args.action == "create":
        create_migration(args.message)
    elif args.action == "upgrade":
        run_migrations(args.revision)
    elif args.action == "downgrade":
        rollback_migration(args.revision)
    elif args.action == "stamp":
        stamp(args.revision)
    elif args.action == "history":
        command.history(get_alembic_config())
    elif args.action == "current":
        command.current(get_alembic_config())


if __name__ == "__main__":
    main()
