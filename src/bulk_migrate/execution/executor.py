"""In-process execution of a plan with the same semantics as its script."""

import asyncio
import re
import shlex
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, List, Optional

from loguru import logger
from pydantic import BaseModel, Field

from ..exceptions import StepFailedError
from ..models.plan import ExecutionMode, ExecutionPlan, ExecutionStep, RepoPlan
from ..planning.builder import wait_step

MIGRATION_ID_PATTERN = re.compile(r'\(ID: (.+)\)')


def parse_migration_id(output: str) -> Optional[str]:
    """Migration id printed by a queued migrate-repo step."""
    for line in output.splitlines():
        match = MIGRATION_ID_PATTERN.search(line)
        if match:
            return match.group(1)
    return None


class StepResult(BaseModel):
    """Exit code and combined output of one step."""

    exit_code: int = Field(..., description='Process exit code')
    output: str = Field(default='', description='Combined stdout and stderr')

    @property
    def success(self) -> bool:
        return self.exit_code == 0


class RepoOutcome(BaseModel):
    """What happened to one repository."""

    job_key: str = Field(..., description='Composite job key')
    repository: str = Field(..., description='Target repository name')
    success: bool = Field(..., description='Migration and every follow-up step succeeded')
    migration_id: Optional[str] = Field(default=None, description='Queued migration ID')
    failed_steps: List[str] = Field(default_factory=list, description='Commands that failed')


class ExecutionSummary(BaseModel):
    """Result of executing a plan."""

    mode: ExecutionMode = Field(..., description='Execution mode')
    succeeded: int = Field(default=0, description='Repositories that fully succeeded')
    failed: int = Field(default=0, description='Repositories that failed')
    started_at: datetime = Field(..., description='Execution start time')
    completed_at: Optional[datetime] = Field(default=None, description='Completion time')
    outcomes: List[RepoOutcome] = Field(default_factory=list, description='Per-repo outcomes')

    @property
    def exit_code(self) -> int:
        return 1 if self.failed else 0

    def record(self, outcome: RepoOutcome) -> None:
        self.outcomes.append(outcome)
        if outcome.success:
            self.succeeded += 1
        else:
            self.failed += 1


class StepRunner(ABC):
    """Runs one command line."""

    @abstractmethod
    async def run(self, argv: List[str]) -> StepResult:
        pass


class SubprocessStepRunner(StepRunner):
    """Runs steps as child processes, echoing their output to the log."""

    def __init__(self):
        self.logger = logger.bind(component='SubprocessStepRunner')

    async def run(self, argv: List[str]) -> StepResult:
        self.logger.debug(f'Running: {shlex.join(argv)}')
        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
            )
        except FileNotFoundError:
            self.logger.error(f'Command not found: {argv[0]}')
            return StepResult(exit_code=127, output='')

        lines = []
        while True:
            raw = await process.stdout.readline()
            if not raw:
                break
            line = raw.decode(errors='replace').rstrip()
            lines.append(line)
            self.logger.info(line)

        exit_code = await process.wait()
        return StepResult(exit_code=exit_code, output='\n'.join(lines))


class PlanExecutor:
    """Executes an :class:`ExecutionPlan` step by step.

    Sequential plans stop at the first failing step. Parallel plans abort
    only when a setup or lock step fails; afterwards every repository is
    waited on in queueing order and counted once as succeeded or failed.
    """

    def __init__(self, runner: Optional[StepRunner] = None):
        self.runner = runner or SubprocessStepRunner()
        self.logger = logger.bind(component='PlanExecutor')

    def _argv(self, plan: ExecutionPlan, step: ExecutionStep) -> List[str]:
        return shlex.split(plan.cli_command) + step.argv()

    async def _run(self, plan: ExecutionPlan, step: ExecutionStep) -> StepResult:
        return await self.runner.run(self._argv(plan, step))

    async def _run_guarded(self, plan: ExecutionPlan, step: ExecutionStep) -> StepResult:
        result = await self._run(plan, step)
        if not result.success:
            self.logger.error(f'{step.command} failed with exit code {result.exit_code}')
            raise StepFailedError(step.command, result.exit_code)
        return result

    async def execute(self, plan: ExecutionPlan) -> ExecutionSummary:
        """Execute the plan in its own mode.

        Raises:
            StepFailedError: A step whose failure aborts the run failed
        """
        summary = ExecutionSummary(mode=plan.mode, started_at=datetime.now())

        if plan.is_empty:
            self.logger.warning('Plan has no repositories, nothing to execute')
        elif plan.mode is ExecutionMode.SEQUENTIAL:
            await self._execute_sequential(plan, summary)
        else:
            await self._execute_parallel(plan, summary)

        summary.completed_at = datetime.now()
        self.logger.info(
            f'Execution completed: {summary.succeeded} succeeded, {summary.failed} failed'
        )
        return summary

    async def _execute_sequential(self, plan: ExecutionPlan, summary: ExecutionSummary) -> None:
        for scope_plan in plan.scopes:
            for step in scope_plan.setup:
                await self._run_guarded(plan, step)

            for repo_plan in scope_plan.repo_plans:
                for step in repo_plan.steps:
                    await self._run_guarded(plan, step)
                summary.record(
                    RepoOutcome(
                        job_key=repo_plan.job_key,
                        repository=repo_plan.repo.target_name,
                        success=True,
                    )
                )

    async def _execute_parallel(self, plan: ExecutionPlan, summary: ExecutionSummary) -> None:
        migration_ids: Dict[str, Optional[str]] = {}

        # Pass 1: setup, locks and queued migrations
        for scope_plan in plan.scopes:
            for step in scope_plan.setup:
                await self._run_guarded(plan, step)

            for repo_plan in scope_plan.repo_plans:
                for step in repo_plan.pre_migrate:
                    await self._run_guarded(plan, step)

                result = await self._run(plan, repo_plan.migrate)
                migration_id = parse_migration_id(result.output) if result.success else None
                if migration_id is None:
                    self.logger.error(f'Could not queue migration for {repo_plan.job_key}')
                migration_ids[repo_plan.job_key] = migration_id

        # Pass 2: waits and post-migration batches, in queueing order
        for key in plan.job_keys:
            repo_plan = self._find(plan, key)
            summary.record(await self._finish_repo(plan, repo_plan, migration_ids.get(key)))

    async def _finish_repo(
        self, plan: ExecutionPlan, repo_plan: RepoPlan, migration_id: Optional[str]
    ) -> RepoOutcome:
        outcome = RepoOutcome(
            job_key=repo_plan.job_key,
            repository=repo_plan.repo.target_name,
            success=False,
            migration_id=migration_id,
        )

        if migration_id is None:
            outcome.failed_steps.append(repo_plan.migrate.command)
            return outcome

        wait = await self._run(plan, wait_step(plan, migration_id))
        if not wait.success:
            outcome.failed_steps.append('wait-for-migration')
            return outcome

        for step in repo_plan.post_migrate:
            result = await self._run(plan, step)
            if not result.success:
                outcome.failed_steps.append(step.command)

        outcome.success = not outcome.failed_steps
        if outcome.failed_steps:
            self.logger.warning(
                f'{repo_plan.job_key}: {len(outcome.failed_steps)} post-migration steps failed'
            )
        return outcome

    @staticmethod
    def _find(plan: ExecutionPlan, key: str) -> RepoPlan:
        for repo_plan in plan.repo_plans():
            if repo_plan.job_key == key:
                return repo_plan
        raise KeyError(key)
