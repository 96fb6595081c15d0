"""In-process plan execution."""

from .executor import ExecutionSummary, PlanExecutor, RepoOutcome, StepRunner

__all__ = ['ExecutionSummary', 'PlanExecutor', 'RepoOutcome', 'StepRunner']
