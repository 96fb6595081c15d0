"""Main CLI entry point for the bulk migration tool."""

import sys
import asyncio
from typing import Optional
from pathlib import Path

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from .. import __version__
from ..api.ado import AdoApi
from ..api.client import GITHUB_API_URL, ClientFactory
from ..api.github import GithubApi
from ..api.storage import AzureBlobStorage, HttpDownloader
from ..config.config import Config
from ..discovery.inventory import AdoInventory, GithubInventory
from ..exceptions import MigrationFailedError
from ..execution.executor import ExecutionSummary, PlanExecutor
from ..migration.archive import ArchivePipeline
from ..migration.runner import MigrationRequest, RepoMigrator
from ..migration.tracker import MigrationStateTracker
from ..models.inventory import ScopeUnit
from ..models.plan import ExecutionMode, ExecutionPlan
from ..planning.builder import ExecutionPlanBuilder, PlanOptions
from ..planning.sources import MigrationSource, SourceKind, create_source
from ..scripting.emitter import ScriptEmitter
from ..utils.logging import setup_logging

console = Console()

FEATURE_FLAGS = [
    ('--create-teams', 'create_teams', 'Create Maintainers and Admins teams per team project'),
    ('--link-idp-groups', 'link_idp_groups', 'Link created teams to IdP groups'),
    ('--lock-source-repos', 'lock_repos', 'Lock source repositories before migrating'),
    ('--disable-source-repos', 'disable_repos', 'Disable source repositories after migrating'),
    ('--add-teams-to-repos', 'add_teams_to_repos', 'Grant the teams access to migrated repos'),
    ('--integrate-boards', 'integrate_boards', 'Configure autolinks and Boards integration'),
    ('--rewire-pipelines', 'rewire_pipelines', 'Rewire Azure Pipelines to the migrated repos'),
    ('--download-migration-logs', 'download_migration_logs', 'Download migration logs'),
    ('--all', 'all', 'Enable every feature above except downloading logs'),
]


def plan_options(func):
    """Options shared by generate-script and execute-plan."""
    for flag, name, help_text in reversed(FEATURE_FLAGS):
        func = click.option(flag, name, is_flag=True, help=help_text)(func)

    options = [
        click.option(
            '--source',
            'source_kind',
            type=click.Choice([kind.value for kind in SourceKind]),
            default=SourceKind.ADO.value,
            show_default=True,
            help='Source platform',
        ),
        click.option('--source-org', required=True, help='Source organization'),
        click.option('--team-project', help='Only this Azure DevOps team project'),
        click.option('--target-org', required=True, help='Target GitHub organization'),
        click.option('--ghes-api-url', help='GHES API URL, e.g. https://ghes.example.com/api/v3'),
        click.option('--ado-server-url', help='Azure DevOps Server URL'),
        click.option('--target-api-url', help='Target API URL passed to generated commands'),
        click.option('--cli-command', help='Command prefix of generated steps'),
        click.option('--sequential', is_flag=True, help='Wait for each migration in turn'),
        click.option('--skip-releases', is_flag=True, help='Leave releases out'),
    ]
    for option in reversed(options):
        func = option(func)
    return func


@click.group()
@click.version_option(version=__version__, prog_name='bulk-migrate')
@click.option(
    '--config',
    '-c',
    type=click.Path(exists=True),
    help='Path to configuration file',
)
@click.option(
    '--verbose',
    '-v',
    is_flag=True,
    help='Enable verbose logging',
)
@click.pass_context
def cli(ctx: click.Context, config: Optional[str], verbose: bool) -> None:
    """Bulk Migration Tool - Plan and drive repository migrations to GitHub."""
    ctx.ensure_object(dict)

    if config:
        ctx.obj['config_path'] = config
    ctx.obj['verbose'] = verbose

    log_level = 'DEBUG' if verbose else 'INFO'
    setup_logging(log_level)


@cli.command()
@click.option(
    '--output',
    '-o',
    default='config.yaml',
    help='Output configuration file path',
)
@click.pass_context
def init(ctx: click.Context, output: str) -> None:
    """Initialize a new configuration file."""
    console.print(
        Panel.fit(
            '[bold green]Bulk Migration Tool[/bold green]\n'
            'Initializing configuration...',
            border_style='green',
        )
    )

    try:
        Config.create_template(output)

        console.print(f'[green]✓[/green] Configuration template created at: {output}')
        console.print(
            f'[yellow]Please edit {output} with your source and target details[/yellow]'
        )

    except Exception as e:
        console.print(f'[red]✗[/red] Failed to create configuration: {e}')
        sys.exit(1)


@cli.command('generate-script')
@plan_options
@click.option(
    '--output',
    '-o',
    default='migrate.ps1',
    show_default=True,
    help='Output script path',
)
@click.pass_context
def generate_script(ctx: click.Context, output: str, **kwargs) -> None:
    """Generate a PowerShell migration script."""
    console.print(
        Panel.fit(
            '[bold blue]Bulk Migration Tool[/bold blue]\nGenerating migration script...',
            border_style='blue',
        )
    )

    try:
        config = _load_config(ctx)
        _setup_logging_with_config(ctx, config)

        plan = asyncio.run(_build_plan(ctx, config, **kwargs))
        script = ScriptEmitter().render(plan)

        Path(output).write_text(script, encoding='utf-8')

        _display_plan(plan)
        if plan.is_empty:
            console.print(
                '[yellow]No migratable repositories found, the script is empty[/yellow]'
            )
        console.print(f'[green]✓[/green] Migration script written to: {output}')

    except Exception as e:
        console.print(f'[red]✗[/red] Script generation failed: {e}')
        if ctx.obj.get('verbose'):
            console.print_exception()
        sys.exit(1)


@cli.command('execute-plan')
@plan_options
@click.pass_context
def execute_plan(ctx: click.Context, **kwargs) -> None:
    """Build a plan and run it in-process."""
    console.print(
        Panel.fit(
            '[bold blue]Bulk Migration Tool[/bold blue]\nExecuting migration plan...',
            border_style='blue',
        )
    )

    try:
        config = _load_config(ctx)
        _setup_logging_with_config(ctx, config)

        plan = asyncio.run(_build_plan(ctx, config, **kwargs))
        _display_plan(plan)

        summary = asyncio.run(PlanExecutor().execute(plan))
        _display_execution_summary(summary)

    except Exception as e:
        console.print(f'[red]✗[/red] Plan execution failed: {e}')
        if ctx.obj.get('verbose'):
            console.print_exception()
        sys.exit(1)

    if summary.exit_code:
        sys.exit(summary.exit_code)


@cli.command('migrate-repo')
@click.option('--ado-org', help='Azure DevOps organization')
@click.option('--ado-team-project', help='Azure DevOps team project')
@click.option('--ado-repo', help='Azure DevOps repository')
@click.option('--github-org', help='Target GitHub organization (Azure DevOps sources)')
@click.option('--github-repo', help='Target repository (Azure DevOps sources)')
@click.option('--ado-server-url', help='Azure DevOps Server URL')
@click.option('--github-source-org', help='Source GitHub organization')
@click.option('--source-repo', help='Source GitHub repository')
@click.option('--github-target-org', help='Target GitHub organization (GitHub sources)')
@click.option('--target-repo', help='Target repository (GitHub sources)')
@click.option('--ghes-api-url', help='GHES API URL of the source')
@click.option('--target-api-url', help='Target API URL')
@click.option('--wait/--queue-only', default=True, help='Wait for the migration to finish')
@click.option('--lock-source-repo', is_flag=True, help='Lock the source repository')
@click.option('--skip-releases', is_flag=True, help='Leave releases out')
@click.option(
    '--target-repo-visibility',
    type=click.Choice(['private', 'internal', 'public']),
    help='Visibility of the migrated repository',
)
@click.option('--verbose', 'step_verbose', is_flag=True, help='Enable verbose logging')
@click.pass_context
def migrate_repo(ctx: click.Context, **kwargs) -> None:
    """Migrate a single repository."""
    try:
        config = _load_config(ctx)
        _setup_logging_with_config(ctx, config, kwargs.pop('step_verbose'))

        result = asyncio.run(_run_migrate_repo(config, **kwargs))

        if result.skipped:
            console.print('[yellow]Target repository already exists, nothing to do[/yellow]')
        elif result.queued:
            # Generated scripts parse the ID from this exact line
            console.print(
                f'A repository migration (ID: {result.migration_id}) was successfully queued.',
                soft_wrap=True,
                highlight=False,
            )
        else:
            console.print(
                f'[green]✓[/green] Migration {result.migration_id} succeeded', soft_wrap=True
            )

    except Exception as e:
        console.print(f'[red]✗[/red] Migration failed: {e}', soft_wrap=True)
        if ctx.obj.get('verbose'):
            console.print_exception()
        sys.exit(1)


@cli.command('wait-for-migration')
@click.option('--migration-id', help='Migration to wait for')
@click.option('--github-org', help='Wait for every migration of this organization')
@click.option('--target-api-url', help='Target API URL')
@click.option('--verbose', 'step_verbose', is_flag=True, help='Enable verbose logging')
@click.pass_context
def wait_for_migration(
    ctx: click.Context,
    migration_id: Optional[str],
    github_org: Optional[str],
    target_api_url: Optional[str],
    step_verbose: bool,
) -> None:
    """Wait for one migration, or for all migrations of an organization."""
    if not migration_id and not github_org:
        raise click.UsageError('Either --migration-id or --github-org must be provided')

    try:
        config = _load_config(ctx)
        _setup_logging_with_config(ctx, config, step_verbose)

        tracker = MigrationStateTracker(
            GithubApi(ClientFactory.create_target_client(config.target, target_api_url)),
            poll_interval=config.migration.wait_interval_seconds,
        )

        if migration_id:
            job = asyncio.run(tracker.wait_for_migration(migration_id))
            console.print(
                f'[green]✓[/green] Migration {job.id} for {job.repository_name} succeeded',
                soft_wrap=True,
            )
        else:
            counts = asyncio.run(tracker.wait_for_all(github_org))
            _display_state_counts(github_org, counts)

    except MigrationFailedError as e:
        console.print(
            f'[red]✗[/red] Migration {e.migration_id} failed for {e.repository_name}: {e}',
            soft_wrap=True,
        )
        sys.exit(1)
    except Exception as e:
        console.print(f'[red]✗[/red] Waiting for migration failed: {e}')
        if ctx.obj.get('verbose'):
            console.print_exception()
        sys.exit(1)


@cli.command()
@click.option('--github-org', help='Also show migration states of this organization')
@click.pass_context
def status(ctx: click.Context, github_org: Optional[str]) -> None:
    """Show configuration and migration status."""
    console.print(
        Panel.fit(
            '[bold magenta]Bulk Migration Tool[/bold magenta]\nMigration Status',
            border_style='magenta',
        )
    )

    try:
        config = _load_config(ctx)
        _setup_logging_with_config(ctx, config)

        table = Table(title='Migration Configuration')
        table.add_column('Setting', style='cyan')
        table.add_column('Value', style='green')

        table.add_row('Target API URL', config.target.api_url)
        table.add_row('Target Token', '✓' if config.target.token else '✗')
        table.add_row('Azure DevOps URL', config.ado.server_url)
        table.add_row('Azure DevOps PAT', '✓' if config.ado.pat else '✗')
        table.add_row('GHES API URL', config.github_source.api_url or '-')
        table.add_row('Source Token', '✓' if config.github_source.token else '✗')
        table.add_row('Blob Storage', '✓' if config.storage.azure_sas_url else '✗')
        table.add_row('Wait Interval', f'{config.migration.wait_interval_seconds:g}s')
        table.add_row('Repo Visibility', config.migration.target_repo_visibility)

        console.print(table)

        if github_org:
            jobs = asyncio.run(
                GithubApi(ClientFactory.create_target_client(config.target))
                .get_migration_states(github_org)
            )
            counts = {}
            for job in jobs:
                counts[job.state.value] = counts.get(job.state.value, 0) + 1
            _display_state_counts(github_org, counts)

    except Exception as e:
        console.print(f'[red]✗[/red] Failed to load status: {e}')
        if ctx.obj.get('verbose'):
            console.print_exception()
        sys.exit(1)


def _load_config(ctx: click.Context) -> Config:
    """Load configuration from file or environment."""
    config_path = ctx.obj.get('config_path')

    if config_path:
        if not Path(config_path).exists():
            raise FileNotFoundError(f'Configuration file not found: {config_path}')
        return Config.from_file(config_path)
    else:
        default_paths = ['config.yaml', 'config.yml', '.bulk-migrate.yaml']
        for path in default_paths:
            if Path(path).exists():
                return Config.from_file(path)

        try:
            return Config.from_env()
        except ValueError as e:
            raise FileNotFoundError(
                'No valid configuration found. Use --config to specify a file or run '
                '"bulk-migrate init" to create one.'
            ) from e


def _setup_logging_with_config(
    ctx: click.Context, config: Config, verbose: bool = False
) -> None:
    """Setup logging with configuration from config file."""
    verbose = verbose or ctx.obj.get('verbose', False)

    log_level = 'DEBUG' if verbose else config.logging.level
    setup_logging(
        level=log_level, log_file=config.logging.file, log_format=config.logging.format
    )


async def _build_plan(
    ctx: click.Context,
    config: Config,
    source_kind: str,
    source_org: str,
    team_project: Optional[str],
    target_org: str,
    ghes_api_url: Optional[str],
    ado_server_url: Optional[str],
    target_api_url: Optional[str],
    cli_command: Optional[str],
    sequential: bool,
    skip_releases: bool,
    **flags,
) -> ExecutionPlan:
    """Discover the inventory and build a plan for it."""
    ghes_api_url = ghes_api_url or config.github_source.api_url
    source = create_source(
        source_kind,
        ghes_api_url=ghes_api_url,
        ado_server_url=ado_server_url or config.ado.server_url,
        skip_releases=skip_releases or config.migration.skip_releases,
    )

    if team_project and not source.has_projects:
        raise click.UsageError(f'--team-project is not supported for {source_kind} sources')

    builder = ExecutionPlanBuilder(
        source,
        target_org,
        options=PlanOptions(**flags),
        mode=ExecutionMode.SEQUENTIAL if sequential else ExecutionMode.PARALLEL,
        target_api_url=target_api_url,
        cli_command=cli_command,
        verbose=ctx.obj.get('verbose', False),
    )
    builder.validate([])

    if source.has_projects:
        inventory = AdoInventory(AdoApi(ClientFactory.create_ado_client(config.ado)), source)

        async def resolve_connection(org: str) -> Optional[str]:
            return await inventory.resolve_connection_id(org, target_org)

        builder.connection_resolver = resolve_connection
        scopes = await inventory.discover(
            source_org, team_project, include_pipelines=builder.options.rewire_pipelines
        )
    else:
        api = GithubApi(
            ClientFactory.create_source_client(
                config.github_source,
                ghes_api_url if source.requires_archives else GITHUB_API_URL,
            )
        )
        scopes = await GithubInventory(api, source).discover(source_org)

    return await builder.build(scopes)


def _migrate_repo_source(config: Config, **kwargs) -> MigrationSource:
    if kwargs['ado_org']:
        return create_source(
            SourceKind.ADO.value,
            ado_server_url=kwargs['ado_server_url'] or config.ado.server_url,
        )
    ghes_api_url = kwargs['ghes_api_url']
    return create_source(
        SourceKind.GHES.value if ghes_api_url else SourceKind.GITHUB.value,
        ghes_api_url=ghes_api_url,
        skip_releases=kwargs['skip_releases'],
    )


async def _run_migrate_repo(config: Config, **kwargs):
    """Wire up a RepoMigrator from command options and run it."""
    source = _migrate_repo_source(config, **kwargs)

    if source.has_projects:
        required = ['ado_org', 'ado_team_project', 'ado_repo', 'github_org']
        request = MigrationRequest(
            source_org=kwargs['ado_org'] or '',
            source_project=kwargs['ado_team_project'],
            source_repo=kwargs['ado_repo'] or '',
            target_org=kwargs['github_org'] or '',
            target_repo=kwargs['github_repo']
            or source.target_repo_name(
                _scope(kwargs['ado_org'], kwargs['ado_team_project']), kwargs['ado_repo'] or ''
            ),
            wait=kwargs['wait'],
            lock_source=kwargs['lock_source_repo'],
            target_repo_visibility=kwargs['target_repo_visibility'],
        )
    else:
        required = ['github_source_org', 'source_repo', 'github_target_org']
        request = MigrationRequest(
            source_org=kwargs['github_source_org'] or '',
            source_repo=kwargs['source_repo'] or '',
            target_org=kwargs['github_target_org'] or '',
            target_repo=kwargs['target_repo'] or kwargs['source_repo'] or '',
            wait=kwargs['wait'],
            lock_source=kwargs['lock_source_repo'],
            skip_releases=kwargs['skip_releases'],
            target_repo_visibility=kwargs['target_repo_visibility'],
        )

    missing = [f'--{name.replace("_", "-")}' for name in required if not kwargs[name]]
    if missing:
        raise click.UsageError(f'Missing required options: {", ".join(missing)}')

    target_api = GithubApi(
        ClientFactory.create_target_client(config.target, kwargs['target_api_url'])
    )
    tracker = MigrationStateTracker(
        target_api, poll_interval=config.migration.wait_interval_seconds
    )

    archive_pipeline = None
    if source.requires_archives:
        archive_pipeline = ArchivePipeline(
            GithubApi(
                ClientFactory.create_source_client(config.github_source, kwargs['ghes_api_url'])
            ),
            AzureBlobStorage(config.storage.azure_sas_url),
            HttpDownloader(),
            poll_interval=config.migration.archive_poll_interval_seconds,
            timeout_hours=config.migration.archive_timeout_hours,
            keep_archive=config.storage.keep_archive,
        )

    migrator = RepoMigrator(config, source, target_api, tracker, archive_pipeline)
    return await migrator.migrate(request)


def _scope(org: Optional[str], project: Optional[str]) -> ScopeUnit:
    return ScopeUnit(org=org or '', project=project)


def _display_plan(plan: ExecutionPlan) -> None:
    """Display the repositories a plan covers."""
    table = Table(title=f'Migration Plan ({plan.mode.value})')
    table.add_column('Scope', style='cyan')
    table.add_column('Source Repository', style='blue')
    table.add_column('Target Repository', style='green')
    table.add_column('Steps', style='yellow')

    for scope_plan in plan.scopes:
        for repo_plan in scope_plan.repo_plans:
            table.add_row(
                scope_plan.scope.label,
                repo_plan.repo.source_name,
                repo_plan.repo.target_name,
                str(len(repo_plan.steps)),
            )

    console.print(table)


def _display_execution_summary(summary: ExecutionSummary) -> None:
    """Display plan execution results."""
    table = Table(title='Execution Summary')
    table.add_column('Repository', style='cyan')
    table.add_column('Result')
    table.add_column('Migration ID', style='blue')
    table.add_column('Failed Steps', style='red')

    for outcome in summary.outcomes:
        table.add_row(
            outcome.job_key,
            '[green]✓[/green]' if outcome.success else '[red]✗[/red]',
            outcome.migration_id or '-',
            ', '.join(outcome.failed_steps),
        )

    console.print(table)
    console.print(f'Total number of successful migrations: {summary.succeeded}')
    console.print(f'Total number of failed migrations: {summary.failed}')

    if summary.completed_at:
        duration = summary.completed_at - summary.started_at
        console.print(f'\n[blue]Execution Duration:[/blue] {duration}')


def _display_state_counts(org: str, counts: dict) -> None:
    """Display migration counts per state."""
    table = Table(title=f'Migrations in {org}')
    table.add_column('State', style='cyan')
    table.add_column('Count', style='green')

    for state, count in counts.items():
        table.add_row(state, str(count))

    console.print(table)


def main() -> None:
    """Main entry point for the CLI application."""
    try:
        cli()
    except KeyboardInterrupt:
        console.print('\n[red]Migration interrupted by user[/red]')
        sys.exit(1)
    except Exception as e:
        console.print(f'[red]Error: {e}[/red]')
        sys.exit(1)


if __name__ == '__main__':
    main()
