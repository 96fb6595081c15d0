"""Tests for source strategies and execution plan building."""

from unittest.mock import AsyncMock

import pytest

from bulk_migrate.exceptions import PlanValidationError
from bulk_migrate.models.inventory import PipelineRef, RepoRef, ScopeUnit
from bulk_migrate.models.plan import ExecutionMode, Phase
from bulk_migrate.planning.builder import (
    NO_APP_CONNECTION_NOTICE,
    NO_REPOS_NOTICE,
    ExecutionPlanBuilder,
    PlanOptions,
    wait_step,
)
from bulk_migrate.planning.sources import (
    AdoSource,
    GhesSource,
    GithubSource,
    create_source,
    replace_invalid_characters,
)


def ado_scope(org='contoso', project='Fabrikam App', repos=None):
    source = AdoSource()
    refs = [source.make_repo_ref(org, project, **repo) for repo in (repos or [])]
    return ScopeUnit(org=org, project=project, repos=refs)


class TestSources:
    """Test source strategies."""

    def test_replace_invalid_characters(self):
        """Test invalid repository name characters are replaced."""
        assert replace_invalid_characters('My Project/web app') == 'My-Project-web-app'
        assert replace_invalid_characters('ok.name_1-2') == 'ok.name_1-2'

    def test_ado_target_repo_name(self):
        """Test ADO repositories are prefixed with their team project."""
        source = AdoSource()
        scope = ScopeUnit(org='contoso', project='Fabrikam App')

        assert source.target_repo_name(scope, 'web api') == 'Fabrikam-App-web-api'

    def test_github_target_repo_name(self):
        """Test GitHub repositories keep their name."""
        source = GithubSource()
        assert source.target_repo_name(ScopeUnit(org='acme'), 'service') == 'service'

    def test_ado_migrate_args_with_custom_server(self):
        """Test ADO Server URLs are passed through."""
        source = AdoSource(server_url='https://ado.example.com/')
        scope = ado_scope(repos=[{'source_name': 'web'}])

        args = source.migrate_args(scope, scope.repos[0], 'target-org')

        assert ('--ado-server-url', 'https://ado.example.com') in args
        assert ('--github-repo', 'Fabrikam-App-web') in args

    def test_ado_migrate_args_default_server(self):
        """Test dev.azure.com is not passed explicitly."""
        scope = ado_scope(repos=[{'source_name': 'web'}])
        args = AdoSource().migrate_args(scope, scope.repos[0], 'target-org')

        assert all(flag != '--ado-server-url' for flag, _ in args)

    def test_github_flags(self):
        """Test GitHub migrate flags."""
        source = GithubSource(skip_releases=True)

        assert source.migrate_flags(lock_repos=True) == [
            ('--skip-releases', None),
            ('--lock-source-repo', None),
        ]
        assert GithubSource().migrate_flags(lock_repos=False) == []

    def test_ghes_source(self):
        """Test GHES source settings."""
        source = GhesSource('https://ghes.example.com/api/v3/')

        assert source.requires_archives is True
        assert source.web_url == 'https://ghes.example.com'
        assert 'AZURE_STORAGE_SAS_URL' in source.required_env_vars
        assert source.repo_url('acme', None, 'svc') == 'https://ghes.example.com/acme/svc'

    def test_ghes_source_requires_url(self):
        """Test GHES sources need an API URL."""
        with pytest.raises(ValueError):
            GhesSource('')

    def test_create_source(self):
        """Test source factory."""
        assert isinstance(create_source('ADO'), AdoSource)
        assert isinstance(create_source('github'), GithubSource)
        assert isinstance(create_source('ghes', ghes_api_url='https://g/api/v3'), GhesSource)

        with pytest.raises(ValueError):
            create_source('bitbucket')

    def test_ado_repo_url(self):
        """Test ADO repository URLs are escaped."""
        source = AdoSource()
        assert source.repo_url('contoso', 'My Project', 'web') == (
            'https://dev.azure.com/contoso/My%20Project/_git/web'
        )


class TestPlanOptions:
    """Test feature flag resolution."""

    def test_all_expands_every_feature_but_logs(self):
        """Test --all turns on everything except log download."""
        options = PlanOptions(all=True).resolve()

        assert options.create_teams
        assert options.link_idp_groups
        assert options.lock_repos
        assert options.disable_repos
        assert options.add_teams_to_repos
        assert options.integrate_boards
        assert options.rewire_pipelines
        assert not options.download_migration_logs
        assert not options.all

    def test_all_without_projects(self):
        """Test --all for sources without projects only locks."""
        options = PlanOptions(all=True).resolve(has_projects=False)

        assert options.lock_repos
        assert options.requested_project_features() == []

    def test_link_idp_implies_create_teams(self):
        """Test IdP linking creates teams."""
        assert PlanOptions(link_idp_groups=True).resolve().create_teams


class TestExecutionPlanBuilder:
    """Test execution plan building."""

    def setup_method(self):
        """Set up test fixtures."""
        self.source = AdoSource()
        self.resolver = AsyncMock(return_value='conn-1')

    def builder(self, mode=ExecutionMode.SEQUENTIAL, **flags):
        return ExecutionPlanBuilder(
            self.source,
            'target-org',
            options=PlanOptions(**flags),
            mode=mode,
            connection_resolver=self.resolver,
        )

    @pytest.mark.asyncio
    async def test_step_order_with_all_features(self):
        """Test a single repository with every feature."""
        scope = ado_scope(
            repos=[
                {
                    'source_name': 'web',
                    'pipelines': [PipelineRef(name='\\ci'), PipelineRef(name='\\cd')],
                }
            ]
        )
        builder = self.builder(all=True, download_migration_logs=True)

        plan = await builder.build([scope])

        scope_plan = plan.scopes[0]
        assert [step.command for step in scope_plan.setup] == [
            'create-team',
            'create-team',
            'share-service-connection',
        ]
        assert [step.command for step in scope_plan.repo_plans[0].steps] == [
            'lock-ado-repo',
            'migrate-repo',
            'disable-ado-repo',
            'configure-autolink',
            'add-team-to-repo',
            'add-team-to-repo',
            'integrate-boards',
            'rewire-pipeline',
            'rewire-pipeline',
            'download-logs',
        ]

    @pytest.mark.asyncio
    async def test_team_names_and_idp_groups(self):
        """Test team creation arguments."""
        scope = ado_scope(repos=[{'source_name': 'web'}])
        plan = await self.builder(link_idp_groups=True).build([scope])

        maintainers = plan.scopes[0].setup[0]
        assert maintainers.args == [
            ('--github-org', 'target-org'),
            ('--team-name', 'Fabrikam-App-Maintainers'),
            ('--idp-group', 'Fabrikam-App-Maintainers'),
        ]

    @pytest.mark.asyncio
    async def test_add_team_roles(self):
        """Test maintainers get maintain and admins get admin."""
        scope = ado_scope(repos=[{'source_name': 'web'}])
        plan = await self.builder(add_teams_to_repos=True).build([scope])

        post = plan.scopes[0].repo_plans[0].post_migrate
        assert ('--role', 'maintain') in post[0].args
        assert ('--team', 'Fabrikam-App-Admins') in post[1].args
        assert ('--role', 'admin') in post[1].args

    @pytest.mark.asyncio
    async def test_repo_without_pipelines_has_no_rewire(self):
        """Test repos without pipelines get no rewire steps."""
        scope = ado_scope(
            repos=[
                {'source_name': 'web', 'pipelines': [PipelineRef(name='\\ci')]},
                {'source_name': 'docs'},
            ]
        )
        plan = await self.builder(rewire_pipelines=True).build([scope])

        web, docs = plan.scopes[0].repo_plans
        assert [s.command for s in web.post_migrate] == ['rewire-pipeline']
        assert docs.post_migrate == []

    @pytest.mark.asyncio
    async def test_connection_lookup_skipped_without_pipelines(self):
        """Test the connection is only resolved for scopes with pipelines."""
        scope = ado_scope(repos=[{'source_name': 'web'}])
        await self.builder(rewire_pipelines=True).build([scope])

        self.resolver.assert_not_called()

    @pytest.mark.asyncio
    async def test_connection_lookup_cached_per_org(self):
        """Test one lookup per organization."""
        pipelines = [PipelineRef(name='\\ci')]
        scopes = [
            ado_scope(project='One', repos=[{'source_name': 'a', 'pipelines': pipelines}]),
            ado_scope(project='Two', repos=[{'source_name': 'b', 'pipelines': pipelines}]),
        ]
        await self.builder(rewire_pipelines=True).build(scopes)

        self.resolver.assert_awaited_once_with('contoso')

    @pytest.mark.asyncio
    async def test_missing_connection_adds_notice(self):
        """Test a missing app connection skips rewiring with a notice."""
        self.resolver = AsyncMock(return_value=None)
        scope = ado_scope(
            repos=[{'source_name': 'web', 'pipelines': [PipelineRef(name='\\ci')]}]
        )
        plan = await self.builder(rewire_pipelines=True).build([scope])

        scope_plan = plan.scopes[0]
        assert scope_plan.notices == [NO_APP_CONNECTION_NOTICE]
        assert scope_plan.setup == []
        assert scope_plan.repo_plans[0].post_migrate == []

    @pytest.mark.asyncio
    async def test_empty_scope(self):
        """Test a scope without repositories produces only a notice."""
        plan = await self.builder(all=True).build([ado_scope()])

        scope_plan = plan.scopes[0]
        assert scope_plan.notices == [NO_REPOS_NOTICE]
        assert scope_plan.setup == []
        assert scope_plan.repo_plans == []
        assert plan.is_empty

    @pytest.mark.asyncio
    async def test_duplicate_target_names_rejected(self):
        """Test colliding target repositories are rejected."""
        scope = ado_scope(repos=[{'source_name': 'web app'}, {'source_name': 'web-app'}])

        with pytest.raises(PlanValidationError) as exc_info:
            await self.builder().build([scope])

        assert 'DUPLICATE REPO NAME' in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_empty_target_org_rejected(self):
        """Test a target organization is required."""
        builder = ExecutionPlanBuilder(self.source, ' ')

        with pytest.raises(PlanValidationError):
            await builder.build([])

    @pytest.mark.asyncio
    async def test_project_features_rejected_for_github(self):
        """Test project-scoped features on a GitHub source."""
        builder = ExecutionPlanBuilder(
            GithubSource(), 'target-org', options=PlanOptions(create_teams=True)
        )

        with pytest.raises(PlanValidationError):
            await builder.build([])

    @pytest.mark.asyncio
    async def test_github_all_locks_via_migrate_flag(self):
        """Test --all on a GitHub source locks through migrate-repo."""
        source = GithubSource()
        scope = ScopeUnit(org='acme', repos=[source.make_repo_ref('acme', None, 'svc')])
        builder = ExecutionPlanBuilder(source, 'target-org', options=PlanOptions(all=True))

        plan = await builder.build([scope])

        repo_plan = plan.scopes[0].repo_plans[0]
        assert repo_plan.pre_migrate == []
        assert ('--lock-source-repo', None) in repo_plan.migrate.args
        assert plan.cli_command == 'gh gei'

    @pytest.mark.asyncio
    async def test_sequential_migrate_step(self):
        """Test sequential plans wait inside migrate-repo."""
        scope = ado_scope(repos=[{'source_name': 'web'}])
        plan = await self.builder().build([scope])

        migrate = plan.scopes[0].repo_plans[0].migrate
        assert migrate.blocking
        assert migrate.phase is Phase.MIGRATE
        assert migrate.argv() == [
            'migrate-repo',
            '--ado-org', 'contoso',
            '--ado-team-project', 'Fabrikam App',
            '--ado-repo', 'web',
            '--github-org', 'target-org',
            '--github-repo', 'Fabrikam-App-web',
            '--wait',
            '--target-repo-visibility', 'private',
        ]

    @pytest.mark.asyncio
    async def test_parallel_plan_registers_keys(self):
        """Test parallel plans queue migrations and register job keys in order."""
        scopes = [
            ado_scope(project='One', repos=[{'source_name': 'b'}, {'source_name': 'a'}]),
            ado_scope(project='Two', repos=[{'source_name': 'c'}]),
        ]
        plan = await self.builder(mode=ExecutionMode.PARALLEL).build(scopes)

        assert plan.job_keys.keys() == ['contoso/One-b', 'contoso/One-a', 'contoso/Two-c']
        for repo_plan in plan.repo_plans():
            assert not repo_plan.migrate.blocking
            assert ('--queue-only', None) in repo_plan.migrate.args

    @pytest.mark.asyncio
    async def test_target_api_url_and_verbose(self):
        """Test shared arguments are added to the right commands."""
        builder = ExecutionPlanBuilder(
            self.source,
            'target-org',
            options=PlanOptions(lock_repos=True, download_migration_logs=True),
            target_api_url='https://ghe.example.com/api/v3',
            verbose=True,
        )
        plan = await builder.build([ado_scope(repos=[{'source_name': 'web'}])])

        repo_plan = plan.scopes[0].repo_plans[0]
        lock, migrate, logs = repo_plan.steps
        assert lock.args[0][0] == '--ado-org'
        assert lock.args[-1] == ('--verbose', None)
        assert migrate.args[0] == ('--target-api-url', 'https://ghe.example.com/api/v3')
        assert migrate.args[-1] == ('--verbose', None)
        assert logs.args[0][0] == '--target-api-url'
        assert ('--verbose', None) not in logs.args

    @pytest.mark.asyncio
    async def test_wait_step(self):
        """Test the wait issued for a queued migration."""
        builder = ExecutionPlanBuilder(
            self.source, 'target-org', target_api_url='https://ghe.example.com/api/v3'
        )
        plan = await builder.build([])

        step = wait_step(plan, 'RM_1')
        assert step.argv() == [
            'wait-for-migration',
            '--target-api-url', 'https://ghe.example.com/api/v3',
            '--migration-id', 'RM_1',
        ]

    @pytest.mark.asyncio
    async def test_build_is_deterministic(self):
        """Test identical input produces identical plans."""
        scope = ado_scope(repos=[{'source_name': 'web'}, {'source_name': 'api'}])

        first = await self.builder(all=True).build([scope])
        second = await self.builder(all=True).build([scope])

        assert [p.steps for p in first.repo_plans()] == [p.steps for p in second.repo_plans()]


class TestRepoRef:
    """Test repository references."""

    def test_make_repo_ref(self):
        """Test repo refs carry their derived target name."""
        ref = AdoSource().make_repo_ref('contoso', 'P', 'web', repo_id='r1')

        assert ref == RepoRef(source_name='web', target_name='P-web', repo_id='r1')
