import os
import logging
from typing import Optional

from alembic.config import Config
from alembic import command

from .configuration import IngestConfig


def get_alembic_config(database_url: Optional[str] = None) -> Config:
    """
    get alembic configuration for the transit store at database_url, by
    default the DATABASE_URL from the environment
    """
    here = os.path.dirname(os.path.abspath(__file__))
    alembic_cfg_file = os.path.join(here, "..", "..", "..", "alembic.ini")
    alembic_cfg_file = os.path.abspath(alembic_cfg_file)

    if database_url is None:
        database_url = IngestConfig.from_env().database_url

    logging.info("getting alembic config from %s", alembic_cfg_file)

    alembic_cfg = Config(alembic_cfg_file)
    # resolve the migrations from the package so the ini file location does
    # not matter
    alembic_cfg.set_main_option("script_location", os.path.join(here, "..", "migrations"))
    # config values are interpolated, escape any % in passwords
    alembic_cfg.set_main_option("sqlalchemy.url", database_url.replace("%", "%%"))
    # keep the logging already set up by the calling process
    alembic_cfg.attributes["configure_logger"] = False

    return alembic_cfg


def alembic_upgrade_to_head(database_url: Optional[str] = None) -> None:
    """
    upgrade the transit store to head revision
    """
    alembic_cfg = get_alembic_config(database_url)

    command.upgrade(alembic_cfg, revision="head")


def alembic_downgrade_to_base(database_url: Optional[str] = None) -> None:
    """
    downgrade the transit store to base revision
    """
    alembic_cfg = get_alembic_config(database_url)

    command.downgrade(alembic_cfg, revision="base")
