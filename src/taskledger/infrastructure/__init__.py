"""Infrastructure layer for taskledger."""

from taskledger.infrastructure.config import Config, ConfigManager
from taskledger.infrastructure.database import Database, get_data_dir, get_default_db_path
from taskledger.infrastructure.exceptions import MigrationError, TaskLedgerError
from taskledger.infrastructure.logger import get_logger, setup_logging
from taskledger.infrastructure.migrations import SchemaMigrator

__all__ = [
    "Config",
    "ConfigManager",
    "Database",
    "MigrationError",
    "SchemaMigrator",
    "TaskLedgerError",
    "get_data_dir",
    "get_default_db_path",
    "get_logger",
    "setup_logging",
]
