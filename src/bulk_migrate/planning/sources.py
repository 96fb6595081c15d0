"""Source platform strategies.

Each source kind knows how to name target repositories, which CLI it is
driven by and which auxiliary steps it supports. The plan builder only talks
to :class:`MigrationSource`.
"""

import re
from abc import ABC, abstractmethod
from enum import Enum
from typing import List, Optional
from urllib.parse import quote, urlparse

from ..config.config import Config
from ..models.inventory import PipelineRef, RepoRef, ScopeUnit
from ..models.plan import ExecutionStep, Phase, StepArg

DEFAULT_ADO_SERVER_URL = 'https://dev.azure.com'
GITHUB_URL = 'https://github.com'

_INVALID_NAME_CHARS = re.compile(r'[^A-Za-z0-9._-]')


def replace_invalid_characters(value: str) -> str:
    """Replace every character GitHub does not allow in a repo name with '-'."""
    return _INVALID_NAME_CHARS.sub('-', value)


class SourceKind(str, Enum):
    """Supported source platforms."""

    ADO = 'ado'
    GITHUB = 'github'
    GHES = 'ghes'


class MigrationSource(ABC):
    """Strategy interface for a source platform."""

    kind: SourceKind
    cli_command: str
    has_projects: bool = False
    requires_archives: bool = False

    @property
    @abstractmethod
    def required_env_vars(self) -> List[str]:
        """Environment variables the generated script must validate."""
        pass

    @abstractmethod
    def target_repo_name(self, scope: ScopeUnit, source_name: str) -> str:
        """Deterministic name of the repository on the target."""
        pass

    @abstractmethod
    def migrate_args(self, scope: ScopeUnit, repo: RepoRef, target_org: str) -> List[StepArg]:
        """Arguments identifying the source and target of a migrate step."""
        pass

    def migrate_flags(self, lock_repos: bool) -> List[StepArg]:
        """Extra switches appended to the migrate step."""
        return []

    @abstractmethod
    def repo_url(self, org: str, project: Optional[str], repo: str) -> str:
        """URL of a source repository."""
        pass

    @abstractmethod
    def source_token(self, config: Config) -> Optional[str]:
        """Credential used by the target platform to read the source."""
        pass

    @abstractmethod
    async def create_migration_source(self, target_api, org_id: str) -> str:
        """Register this platform as a migration source of the target org."""
        pass

    def make_repo_ref(
        self,
        scope_org: str,
        project: Optional[str],
        source_name: str,
        repo_id: Optional[str] = None,
        pipelines: Optional[List[PipelineRef]] = None,
    ) -> RepoRef:
        """Build a RepoRef with its derived target name."""
        scope = ScopeUnit(org=scope_org, project=project)
        return RepoRef(
            source_name=source_name,
            target_name=self.target_repo_name(scope, source_name),
            repo_id=repo_id,
            pipelines=pipelines or [],
        )

    # Optional steps. Sources without a counterpart return None.

    def lock_step(self, scope: ScopeUnit, repo: RepoRef) -> Optional[ExecutionStep]:
        return None

    def disable_step(self, scope: ScopeUnit, repo: RepoRef) -> Optional[ExecutionStep]:
        return None

    def autolink_step(
        self, scope: ScopeUnit, repo: RepoRef, target_org: str
    ) -> Optional[ExecutionStep]:
        return None

    def boards_step(
        self, scope: ScopeUnit, repo: RepoRef, target_org: str
    ) -> Optional[ExecutionStep]:
        return None

    def share_connection_step(
        self, scope: ScopeUnit, connection_id: str
    ) -> Optional[ExecutionStep]:
        return None

    def rewire_step(
        self,
        scope: ScopeUnit,
        repo: RepoRef,
        pipeline: PipelineRef,
        target_org: str,
        connection_id: str,
    ) -> Optional[ExecutionStep]:
        return None

    def download_logs_step(self, repo: RepoRef, target_org: str) -> ExecutionStep:
        return ExecutionStep(
            command='download-logs',
            args=[('--github-org', target_org), ('--github-repo', repo.target_name)],
            phase=Phase.POST_MIGRATE,
        )


class AdoSource(MigrationSource):
    """Azure DevOps organizations and team projects."""

    kind = SourceKind.ADO
    cli_command = 'gh ado2gh'
    has_projects = True

    def __init__(self, server_url: Optional[str] = None):
        self.server_url = (server_url or DEFAULT_ADO_SERVER_URL).rstrip('/')

    @property
    def required_env_vars(self) -> List[str]:
        return ['ADO_PAT', 'GH_PAT']

    def target_repo_name(self, scope: ScopeUnit, source_name: str) -> str:
        return replace_invalid_characters(f'{scope.project}-{source_name}')

    def _repo_args(self, scope: ScopeUnit, repo: RepoRef) -> List[StepArg]:
        return [
            ('--ado-org', scope.org),
            ('--ado-team-project', scope.project),
            ('--ado-repo', repo.source_name),
        ]

    def migrate_args(self, scope: ScopeUnit, repo: RepoRef, target_org: str) -> List[StepArg]:
        args = self._repo_args(scope, repo) + [
            ('--github-org', target_org),
            ('--github-repo', repo.target_name),
        ]
        if self.server_url != DEFAULT_ADO_SERVER_URL:
            args.append(('--ado-server-url', self.server_url))
        return args

    def repo_url(self, org: str, project: Optional[str], repo: str) -> str:
        return f'{self.server_url}/{quote(org)}/{quote(project or "")}/_git/{quote(repo)}'

    def source_token(self, config: Config) -> Optional[str]:
        return config.ado.pat

    async def create_migration_source(self, target_api, org_id: str) -> str:
        return await target_api.create_ado_migration_source(org_id, self.server_url)

    def lock_step(self, scope: ScopeUnit, repo: RepoRef) -> Optional[ExecutionStep]:
        return ExecutionStep(
            command='lock-ado-repo',
            args=self._repo_args(scope, repo),
            phase=Phase.PRE_MIGRATE,
        )

    def disable_step(self, scope: ScopeUnit, repo: RepoRef) -> Optional[ExecutionStep]:
        return ExecutionStep(
            command='disable-ado-repo',
            args=self._repo_args(scope, repo),
            phase=Phase.POST_MIGRATE,
        )

    def autolink_step(
        self, scope: ScopeUnit, repo: RepoRef, target_org: str
    ) -> Optional[ExecutionStep]:
        return ExecutionStep(
            command='configure-autolink',
            args=[
                ('--github-org', target_org),
                ('--github-repo', repo.target_name),
                ('--ado-org', scope.org),
                ('--ado-team-project', scope.project),
            ],
            phase=Phase.POST_MIGRATE,
        )

    def boards_step(
        self, scope: ScopeUnit, repo: RepoRef, target_org: str
    ) -> Optional[ExecutionStep]:
        return ExecutionStep(
            command='integrate-boards',
            args=[
                ('--ado-org', scope.org),
                ('--ado-team-project', scope.project),
                ('--github-org', target_org),
                ('--github-repo', repo.target_name),
            ],
            phase=Phase.POST_MIGRATE,
        )

    def share_connection_step(
        self, scope: ScopeUnit, connection_id: str
    ) -> Optional[ExecutionStep]:
        return ExecutionStep(
            command='share-service-connection',
            args=[
                ('--ado-org', scope.org),
                ('--ado-team-project', scope.project),
                ('--service-connection-id', connection_id),
            ],
            phase=Phase.SETUP,
        )

    def rewire_step(
        self,
        scope: ScopeUnit,
        repo: RepoRef,
        pipeline: PipelineRef,
        target_org: str,
        connection_id: str,
    ) -> Optional[ExecutionStep]:
        return ExecutionStep(
            command='rewire-pipeline',
            args=[
                ('--ado-org', scope.org),
                ('--ado-team-project', scope.project),
                ('--ado-pipeline', pipeline.name),
                ('--github-org', target_org),
                ('--github-repo', repo.target_name),
                ('--service-connection-id', connection_id),
            ],
            phase=Phase.POST_MIGRATE,
        )


class GithubSource(MigrationSource):
    """GitHub.com organizations."""

    kind = SourceKind.GITHUB
    cli_command = 'gh gei'

    def __init__(self, skip_releases: bool = False):
        self.skip_releases = skip_releases

    @property
    def required_env_vars(self) -> List[str]:
        return ['GH_PAT']

    def target_repo_name(self, scope: ScopeUnit, source_name: str) -> str:
        return source_name

    def migrate_args(self, scope: ScopeUnit, repo: RepoRef, target_org: str) -> List[StepArg]:
        return [
            ('--github-source-org', scope.org),
            ('--source-repo', repo.source_name),
            ('--github-target-org', target_org),
            ('--target-repo', repo.target_name),
        ]

    def migrate_flags(self, lock_repos: bool) -> List[StepArg]:
        flags: List[StepArg] = []
        if self.skip_releases:
            flags.append(('--skip-releases', None))
        if lock_repos:
            flags.append(('--lock-source-repo', None))
        return flags

    def repo_url(self, org: str, project: Optional[str], repo: str) -> str:
        return f'{GITHUB_URL}/{quote(org)}/{quote(repo)}'

    def source_token(self, config: Config) -> Optional[str]:
        return config.github_source.token

    async def create_migration_source(self, target_api, org_id: str) -> str:
        return await target_api.create_github_migration_source(org_id)


class GhesSource(GithubSource):
    """GitHub Enterprise Server organizations; migrations go through archives."""

    kind = SourceKind.GHES
    requires_archives = True

    def __init__(self, ghes_api_url: str, skip_releases: bool = False):
        super().__init__(skip_releases=skip_releases)
        if not ghes_api_url:
            raise ValueError('A GHES API URL is required for GHES sources')
        self.ghes_api_url = ghes_api_url.rstrip('/')

    @property
    def required_env_vars(self) -> List[str]:
        return ['GH_PAT', 'AZURE_STORAGE_SAS_URL']

    @property
    def web_url(self) -> str:
        parsed = urlparse(self.ghes_api_url)
        return f'{parsed.scheme}://{parsed.netloc}'

    def migrate_args(self, scope: ScopeUnit, repo: RepoRef, target_org: str) -> List[StepArg]:
        return super().migrate_args(scope, repo, target_org) + [
            ('--ghes-api-url', self.ghes_api_url)
        ]

    def repo_url(self, org: str, project: Optional[str], repo: str) -> str:
        return f'{self.web_url}/{quote(org)}/{quote(repo)}'


def create_source(
    kind: str,
    ghes_api_url: Optional[str] = None,
    ado_server_url: Optional[str] = None,
    skip_releases: bool = False,
) -> MigrationSource:
    """Create the strategy for a source kind.

    Args:
        kind: One of 'ado', 'github', 'ghes'
        ghes_api_url: GHES API URL, required for 'ghes'
        ado_server_url: Azure DevOps Server URL, if not dev.azure.com
        skip_releases: Leave releases out of GitHub migrations

    Raises:
        ValueError: For an unknown kind
    """
    source_kind = SourceKind(kind.lower())

    if source_kind is SourceKind.ADO:
        return AdoSource(server_url=ado_server_url)
    if source_kind is SourceKind.GHES:
        return GhesSource(ghes_api_url, skip_releases=skip_releases)
    return GithubSource(skip_releases=skip_releases)
