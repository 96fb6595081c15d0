"""Execution plan building."""

from .sources import (
    AdoSource,
    GhesSource,
    GithubSource,
    MigrationSource,
    SourceKind,
    create_source,
)
from .builder import ExecutionPlanBuilder, PlanOptions

__all__ = [
    'AdoSource',
    'GhesSource',
    'GithubSource',
    'MigrationSource',
    'SourceKind',
    'create_source',
    'ExecutionPlanBuilder',
    'PlanOptions',
]
