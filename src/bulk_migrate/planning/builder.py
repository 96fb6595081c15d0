"""Turns discovered inventory into an ordered execution plan."""

from typing import Awaitable, Callable, Dict, List, Optional, Sequence

from loguru import logger
from pydantic import BaseModel, Field

from ..exceptions import PlanValidationError
from ..models.inventory import RepoRef, ScopeUnit
from ..models.plan import (
    ExecutionMode,
    ExecutionPlan,
    ExecutionStep,
    JobHandleRegistry,
    Phase,
    RepoPlan,
    ScopePlan,
    StepArg,
)
from .sources import MigrationSource, replace_invalid_characters

ConnectionResolver = Callable[[str], Awaitable[Optional[str]]]

NO_REPOS_NOTICE = 'Skipping this Team Project because it has no git repos'
NO_APP_CONNECTION_NOTICE = (
    'No GitHub App in this org, skipping the re-wiring of Azure Pipelines to GitHub repos'
)

# Commands that talk to the target and therefore accept --target-api-url
TARGET_COMMANDS = {
    'create-team',
    'add-team-to-repo',
    'migrate-repo',
    'wait-for-migration',
    'download-logs',
}

# Commands generated scripts never pass --verbose to
QUIET_COMMANDS = {'wait-for-migration', 'download-logs'}


class PlanOptions(BaseModel):
    """Optional features of a generated plan."""

    create_teams: bool = Field(default=False, description='Create Maintainers/Admins teams')
    link_idp_groups: bool = Field(default=False, description='Bind teams to IdP groups')
    lock_repos: bool = Field(default=False, description='Lock source repos before migrating')
    disable_repos: bool = Field(default=False, description='Disable source repos afterwards')
    add_teams_to_repos: bool = Field(default=False, description='Grant teams on migrated repos')
    integrate_boards: bool = Field(default=False, description='Autolink and Boards integration')
    rewire_pipelines: bool = Field(default=False, description='Rewire pipelines to GitHub')
    download_migration_logs: bool = Field(default=False, description='Download migration logs')
    all: bool = Field(default=False, description='Enable every feature above but log download')

    def resolve(self, has_projects: bool = True) -> 'PlanOptions':
        """Expand ``all`` and implied flags.

        For sources without team projects ``all`` only turns on the features
        those sources support.
        """
        values = self.model_dump()
        if self.all:
            values['lock_repos'] = True
            if has_projects:
                for name in PROJECT_SCOPED_FEATURES:
                    values[name] = True
                values['link_idp_groups'] = True
        if values['link_idp_groups']:
            values['create_teams'] = True
        values['all'] = False
        return PlanOptions(**values)

    def requested_project_features(self) -> List[str]:
        """Names of requested features that need a team project."""
        return [name for name in PROJECT_SCOPED_FEATURES if getattr(self, name)]


PROJECT_SCOPED_FEATURES = (
    'create_teams',
    'link_idp_groups',
    'disable_repos',
    'add_teams_to_repos',
    'integrate_boards',
    'rewire_pipelines',
)


class ExecutionPlanBuilder:
    """Builds an :class:`ExecutionPlan` from scope units.

    Validation happens before any remote call. The only remote call made
    while building is the per-organization app connection lookup used for
    pipeline rewiring, and its result is cached per organization.
    """

    def __init__(
        self,
        source: MigrationSource,
        target_org: str,
        options: Optional[PlanOptions] = None,
        mode: ExecutionMode = ExecutionMode.PARALLEL,
        connection_resolver: Optional[ConnectionResolver] = None,
        target_api_url: Optional[str] = None,
        cli_command: Optional[str] = None,
        verbose: bool = False,
    ):
        """Initialize plan builder.

        Args:
            source: Source platform strategy
            target_org: Target GitHub organization
            options: Feature flags
            mode: Sequential or parallel plan
            connection_resolver: Coroutine resolving an org's shared app connection id
            target_api_url: Target API URL passed to target-side commands
            cli_command: Command prefix override, defaults to the source's CLI
            verbose: Pass --verbose to generated commands
        """
        self.source = source
        self.target_org = target_org
        self.requested = options or PlanOptions()
        self.options = self.requested.resolve(has_projects=source.has_projects)
        self.mode = mode
        self.connection_resolver = connection_resolver
        self.target_api_url = target_api_url
        self.cli_command = cli_command or source.cli_command
        self.verbose = verbose
        self.logger = logger.bind(component='ExecutionPlanBuilder')
        self._connection_ids: Dict[str, Optional[str]] = {}

    async def build(self, scopes: Sequence[ScopeUnit]) -> ExecutionPlan:
        """Build the plan for every scope, in discovery order.

        Raises:
            PlanValidationError: If options or inventory are invalid
        """
        self.validate(scopes)

        plan = ExecutionPlan(
            mode=self.mode,
            cli_command=self.cli_command,
            target_api_url=self.target_api_url,
            required_env_vars=self.source.required_env_vars,
        )

        for scope in scopes:
            plan.scopes.append(await self._build_scope(scope, plan.job_keys))

        self.logger.info(
            f'Built {self.mode.value} plan for {plan.repo_count} repositories '
            f'in {len(plan.scopes)} scopes'
        )
        return plan

    def validate(self, scopes: Sequence[ScopeUnit]) -> None:
        """Reject invalid input before anything talks to a remote system.

        Raises:
            PlanValidationError: On empty target org, project features for a
                source without projects or colliding target repositories
        """
        if not self.target_org or not self.target_org.strip():
            raise PlanValidationError('A target organization is required')

        if not self.source.has_projects:
            requested = self.requested.resolve(has_projects=False).requested_project_features()
            if requested:
                raise PlanValidationError(
                    f'{", ".join(requested)} require team projects, which '
                    f'{self.source.kind.value} sources do not have'
                )

        seen_keys = set()
        seen_targets = set()
        for scope in scopes:
            for repo in scope.repos:
                key = self.job_key(scope, repo)
                if key in seen_keys or repo.target_name in seen_targets:
                    raise PlanValidationError(
                        f'DUPLICATE REPO NAME: {repo.target_name} is produced by more '
                        f'than one source repository'
                    )
                seen_keys.add(key)
                seen_targets.add(repo.target_name)

    @staticmethod
    def job_key(scope: ScopeUnit, repo: RepoRef) -> str:
        """Composite key a queued migration is registered under."""
        return f'{scope.org}/{repo.target_name}'

    async def _build_scope(self, scope: ScopeUnit, registry: JobHandleRegistry) -> ScopePlan:
        if not scope.repos:
            self.logger.info(f'No repositories in {scope.label}, skipping')
            return ScopePlan(scope=scope, notices=[NO_REPOS_NOTICE])

        setup: List[ExecutionStep] = []
        notices: List[str] = []

        if self.options.create_teams:
            for role in ('Maintainers', 'Admins'):
                setup.append(self._create_team_step(scope, role))

        connection_id = None
        if self.options.rewire_pipelines and scope.has_pipelines:
            connection_id = await self._resolve_connection_id(scope.org)
            if connection_id:
                step = self.source.share_connection_step(scope, connection_id)
                if step:
                    setup.append(self._finish(step))
            else:
                notices.append(NO_APP_CONNECTION_NOTICE)

        repo_plans = []
        for repo in scope.repos:
            key = self.job_key(scope, repo)
            registry.register(key, repo)
            repo_plans.append(self._build_repo(scope, repo, key, connection_id))

        return ScopePlan(scope=scope, setup=setup, repo_plans=repo_plans, notices=notices)

    def _build_repo(
        self,
        scope: ScopeUnit,
        repo: RepoRef,
        key: str,
        connection_id: Optional[str],
    ) -> RepoPlan:
        pre_migrate = []
        if self.options.lock_repos:
            step = self.source.lock_step(scope, repo)
            if step:
                pre_migrate.append(self._finish(step))

        post_migrate = []
        if self.options.disable_repos:
            post_migrate.append(self.source.disable_step(scope, repo))
        if self.options.integrate_boards:
            post_migrate.append(self.source.autolink_step(scope, repo, self.target_org))
        if self.options.add_teams_to_repos:
            post_migrate.append(self._add_team_step(scope, repo, 'Maintainers', 'maintain'))
            post_migrate.append(self._add_team_step(scope, repo, 'Admins', 'admin'))
        if self.options.integrate_boards:
            post_migrate.append(self.source.boards_step(scope, repo, self.target_org))
        if self.options.rewire_pipelines and connection_id:
            for pipeline in repo.pipelines:
                post_migrate.append(
                    self.source.rewire_step(
                        scope, repo, pipeline, self.target_org, connection_id
                    )
                )
        if self.options.download_migration_logs:
            post_migrate.append(self.source.download_logs_step(repo, self.target_org))

        return RepoPlan(
            repo=repo,
            job_key=key,
            pre_migrate=pre_migrate,
            migrate=self._migrate_step(scope, repo),
            post_migrate=[self._finish(step) for step in post_migrate if step is not None],
        )

    def _migrate_step(self, scope: ScopeUnit, repo: RepoRef) -> ExecutionStep:
        blocking = self.mode is ExecutionMode.SEQUENTIAL
        args: List[StepArg] = self.source.migrate_args(scope, repo, self.target_org)
        args.append(('--wait', None) if blocking else ('--queue-only', None))
        args.extend(self.source.migrate_flags(self.options.lock_repos))
        args.append(('--target-repo-visibility', 'private'))

        return self._finish(
            ExecutionStep(
                command='migrate-repo', args=args, phase=Phase.MIGRATE, blocking=blocking
            )
        )

    def _team_name(self, scope: ScopeUnit, role: str) -> str:
        return f'{replace_invalid_characters(scope.project or scope.org)}-{role}'

    def _create_team_step(self, scope: ScopeUnit, role: str) -> ExecutionStep:
        team = self._team_name(scope, role)
        args: List[StepArg] = [('--github-org', self.target_org), ('--team-name', team)]
        if self.options.link_idp_groups:
            args.append(('--idp-group', team))
        return self._finish(ExecutionStep(command='create-team', args=args, phase=Phase.SETUP))

    def _add_team_step(
        self, scope: ScopeUnit, repo: RepoRef, role: str, permission: str
    ) -> ExecutionStep:
        return ExecutionStep(
            command='add-team-to-repo',
            args=[
                ('--github-org', self.target_org),
                ('--github-repo', repo.target_name),
                ('--team', self._team_name(scope, role)),
                ('--role', permission),
            ],
            phase=Phase.POST_MIGRATE,
        )

    def _finish(self, step: ExecutionStep) -> ExecutionStep:
        """Add the arguments every step of this plan shares."""
        args = list(step.args)
        if self.target_api_url and step.command in TARGET_COMMANDS:
            args.insert(0, ('--target-api-url', self.target_api_url))
        if self.verbose and step.command not in QUIET_COMMANDS:
            args.append(('--verbose', None))
        return step.model_copy(update={'args': args})

    async def _resolve_connection_id(self, org: str) -> Optional[str]:
        if org in self._connection_ids:
            return self._connection_ids[org]

        connection_id = None
        if self.connection_resolver is not None:
            connection_id = await self.connection_resolver(org)

        if not connection_id:
            self.logger.warning(
                f'CANNOT FIND GITHUB APP SERVICE CONNECTION IN ADO ORGANIZATION: {org}. '
                'Pipelines in this organization will not be rewired'
            )

        self._connection_ids[org] = connection_id
        return connection_id


def wait_step(plan: ExecutionPlan, migration_id: str) -> ExecutionStep:
    """The blocking wait issued for a queued migration."""
    args: List[StepArg] = []
    if plan.target_api_url:
        args.append(('--target-api-url', plan.target_api_url))
    args.append(('--migration-id', migration_id))
    return ExecutionStep(command='wait-for-migration', args=args, phase=Phase.MIGRATE)
