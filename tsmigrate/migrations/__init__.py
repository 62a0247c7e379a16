"""
Migration Engine
"""
from .engine import (
    MigrationEngine,
    create_migration_engine,
    describe_import_error
)
