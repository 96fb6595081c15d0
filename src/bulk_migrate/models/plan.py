"""Execution plan models.

Plans are pure data: nothing here talks to a remote system. A plan is built
by :class:`~bulk_migrate.planning.builder.ExecutionPlanBuilder`, rendered by
the script emitter or run by the plan executor.
"""

from collections import OrderedDict
from enum import Enum
from typing import Iterator, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from ..exceptions import PlanValidationError
from .inventory import RepoRef, ScopeUnit

StepArg = Tuple[str, Optional[str]]


class ExecutionMode(str, Enum):
    """How the generated plan waits for migrations."""

    SEQUENTIAL = 'sequential'
    PARALLEL = 'parallel'


class Phase(str, Enum):
    """Plan phase a step belongs to."""

    SETUP = 'setup'
    PRE_MIGRATE = 'pre_migrate'
    MIGRATE = 'migrate'
    POST_MIGRATE = 'post_migrate'


class ExecutionStep(BaseModel):
    """One CLI invocation in a plan."""

    model_config = ConfigDict(frozen=True)

    command: str = Field(..., description='Sub-command name, e.g. migrate-repo')
    args: List[StepArg] = Field(
        default_factory=list, description='Ordered (flag, value) pairs; value None for switches'
    )
    phase: Phase = Field(..., description='Plan phase')
    blocking: bool = Field(
        default=True, description='Whether the step waits for its remote work to finish'
    )

    def argv(self) -> List[str]:
        """Arguments as a flat list, without the CLI prefix."""
        result = [self.command]
        for flag, value in self.args:
            result.append(flag)
            if value is not None:
                result.append(value)
        return result


class RepoPlan(BaseModel):
    """Steps for a single repository."""

    model_config = ConfigDict(frozen=True)

    repo: RepoRef
    job_key: str = Field(..., description='Composite key: {org}/{target repo}')
    pre_migrate: List[ExecutionStep] = Field(default_factory=list)
    migrate: ExecutionStep
    post_migrate: List[ExecutionStep] = Field(default_factory=list)

    @property
    def steps(self) -> List[ExecutionStep]:
        """All steps, post-migrate always after migrate."""
        return [*self.pre_migrate, self.migrate, *self.post_migrate]


class ScopePlan(BaseModel):
    """Setup steps and repository plans for one scope unit."""

    model_config = ConfigDict(frozen=True)

    scope: ScopeUnit
    setup: List[ExecutionStep] = Field(default_factory=list)
    repo_plans: List[RepoPlan] = Field(default_factory=list)
    notices: List[str] = Field(
        default_factory=list, description='Comment lines rendered under the scope header'
    )

    @property
    def is_empty(self) -> bool:
        return not self.repo_plans


class JobHandleRegistry:
    """Insertion-ordered, write-once map from job key to repository.

    Parallel plans queue every migration first and wait on them later; the
    second pass walks this registry so output order always matches
    discovery order.
    """

    def __init__(self):
        self._entries: 'OrderedDict[str, RepoRef]' = OrderedDict()

    def register(self, key: str, repo: RepoRef) -> None:
        if key in self._entries:
            raise PlanValidationError(
                f'DUPLICATE REPO NAME: {key} is produced by more than one source repository'
            )
        self._entries[key] = repo

    def get(self, key: str) -> Optional[RepoRef]:
        return self._entries.get(key)

    def keys(self) -> List[str]:
        return list(self._entries.keys())

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)


class ExecutionPlan(BaseModel):
    """A complete plan across every scope unit."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    mode: ExecutionMode
    cli_command: str = Field(..., description='Command prefix, e.g. "gh ado2gh"')
    target_api_url: Optional[str] = Field(default=None)
    required_env_vars: List[str] = Field(default_factory=list)
    scopes: List[ScopePlan] = Field(default_factory=list)
    job_keys: JobHandleRegistry = Field(default_factory=JobHandleRegistry)

    @property
    def repo_count(self) -> int:
        return sum(len(scope.repo_plans) for scope in self.scopes)

    @property
    def is_empty(self) -> bool:
        return self.repo_count == 0

    def repo_plans(self) -> List[RepoPlan]:
        """Every repository plan, in discovery order."""
        return [plan for scope in self.scopes for plan in scope.repo_plans]
