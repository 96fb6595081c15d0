"""Renders execution plans as PowerShell migration scripts."""

from typing import List, Optional

from loguru import logger

from .. import __version__
from ..models.plan import ExecutionMode, ExecutionPlan, ExecutionStep, RepoPlan, ScopePlan

PWSH_SHEBANG = '#!/usr/bin/env pwsh'

EXEC_FUNCTION_BLOCK = '''
function Exec {
    param (
        [scriptblock]$ScriptBlock
    )
    & @ScriptBlock
    if ($lastexitcode -ne 0) {
        exit $lastexitcode
    }
}'''

EXEC_AND_GET_MIGRATION_ID_FUNCTION_BLOCK = '''
function ExecAndGetMigrationID {
    param (
        [scriptblock]$ScriptBlock
    )
    $MigrationID = & @ScriptBlock | ForEach-Object {
        Write-Host $_
        $_
    } | Select-String -Pattern "\\(ID: (.+)\\)" | ForEach-Object { $_.matches.groups[1] }
    return $MigrationID
}'''

EXEC_BATCH_FUNCTION_BLOCK = '''
function ExecBatch {
    param (
        [scriptblock[]]$ScriptBlocks
    )
    $Global:LastBatchFailures = 0
    foreach ($ScriptBlock in $ScriptBlocks)
    {
        & @ScriptBlock
        if ($lastexitcode -ne 0) {
            $Global:LastBatchFailures++
        }
    }
}'''

ENV_VAR_DESCRIPTIONS = {
    'ADO_PAT': ('an Azure DevOps Personal Access Token', 'Azure DevOps'),
    'GH_PAT': ('a GitHub Personal Access Token', 'GitHub'),
    'GH_SOURCE_PAT': ('a source GitHub Personal Access Token', 'the source GitHub'),
    'AZURE_STORAGE_SAS_URL': ('an Azure Blob container SAS URL', 'Azure Blob Storage'),
}

SUMMARY_BLOCK = '''
if ($Failed -ne 0) {
    exit 1
}'''

INDENT = '    '

# straight and typographic double quotes
DOUBLE_QUOTE_CHARS = '"\u201c\u201d\u201e'


def quote(value: str) -> str:
    """Double-quote a value for PowerShell.

    Backtick is the escape character. PowerShell also ends a double-quoted
    string at the typographic quotes, so those are escaped alongside
    backticks, straight quotes and dollar signs.
    """
    escaped = value.replace('`', '``')
    for char in DOUBLE_QUOTE_CHARS + '$':
        escaped = escaped.replace(char, '`' + char)
    return f'"{escaped}"'


def env_var_check(name: str) -> str:
    """Block failing the script early when a required variable is unset."""
    expected, used_for = ENV_VAR_DESCRIPTIONS.get(name, ('a valid value', 'the migration'))
    return (
        f'\nif (-not $env:{name}) {{\n'
        f'{INDENT}Write-Error "{name} environment variable must be set to {expected} '
        f'with the appropriate scopes."\n'
        f'{INDENT}exit 1\n'
        f'}} else {{\n'
        f'{INDENT}Write-Host "{name} environment variable is set and will be used to '
        f'authenticate to {used_for}."\n'
        f'}}'
    )


class ScriptEmitter:
    """Pure, deterministic rendering of an :class:`ExecutionPlan`.

    The same plan always renders to byte-identical text. A plan without any
    repository renders to the empty string.
    """

    def __init__(self, version: Optional[str] = None):
        self.version = version or __version__
        self.logger = logger.bind(component='ScriptEmitter')

    def render(self, plan: ExecutionPlan) -> str:
        """Render the plan in its own execution mode."""
        if plan.is_empty:
            self.logger.warning('No migratable repositories found, nothing to render')
            return ''

        if plan.mode is ExecutionMode.SEQUENTIAL:
            lines = self._render_sequential(plan)
        else:
            lines = self._render_parallel(plan)

        self.logger.debug(f'Rendered {plan.mode.value} script with {len(lines)} lines')
        return '\n'.join(lines) + '\n'

    def command_line(self, plan: ExecutionPlan, step: ExecutionStep) -> str:
        """A step as a single command line with every value quoted."""
        parts = [plan.cli_command, step.command]
        for flag, value in step.args:
            parts.append(flag)
            if value is not None:
                parts.append(quote(value))
        return ' '.join(parts)

    def _exec(self, plan: ExecutionPlan, step: ExecutionStep) -> str:
        return f'Exec {{ {self.command_line(plan, step)} }}'

    def _header(self, plan: ExecutionPlan) -> List[str]:
        lines = [
            PWSH_SHEBANG,
            '',
            f'# =========== Created with CLI version {self.version} ===========',
            EXEC_FUNCTION_BLOCK,
        ]
        if plan.mode is ExecutionMode.PARALLEL:
            lines.append(EXEC_AND_GET_MIGRATION_ID_FUNCTION_BLOCK)
            lines.append(EXEC_BATCH_FUNCTION_BLOCK)
        for name in plan.required_env_vars:
            lines.append(env_var_check(name))
        return lines

    @staticmethod
    def _org_changes(scopes: List[ScopePlan]):
        """Yield (is_new_org, scope) in order."""
        previous = None
        for scope_plan in scopes:
            org = scope_plan.scope.org
            yield org != previous, scope_plan
            previous = org

    def _render_sequential(self, plan: ExecutionPlan) -> List[str]:
        lines = self._header(plan)

        for new_org, scope_plan in self._org_changes(plan.scopes):
            scope = scope_plan.scope
            if new_org:
                lines.append('')
                lines.append(f'# =========== Organization: {scope.org} ===========')
            if scope.project:
                lines.append('')
                lines.append(f'# === Team Project: {scope.org}/{scope.project} ===')
            lines.extend(f'# {notice}' for notice in scope_plan.notices)

            for step in scope_plan.setup:
                lines.append(self._exec(plan, step))

            for repo_plan in scope_plan.repo_plans:
                lines.append('')
                lines.extend(self._exec(plan, step) for step in repo_plan.steps)

        return lines

    def _render_parallel(self, plan: ExecutionPlan) -> List[str]:
        lines = self._header(plan)
        lines.extend(['', '$Succeeded = 0', '$Failed = 0', '$RepoMigrations = [ordered]@{}'])

        # Pass 1: setup, locks and queued migrations
        for new_org, scope_plan in self._org_changes(plan.scopes):
            scope = scope_plan.scope
            if new_org:
                lines.append('')
                lines.append(
                    f'# =========== Queueing migration for Organization: {scope.org} ==========='
                )
            if scope.project:
                lines.append('')
                lines.append(
                    f'# === Queueing repo migrations for Team Project: '
                    f'{scope.org}/{scope.project} ==='
                )
            lines.extend(f'# {notice}' for notice in scope_plan.notices)

            for step in scope_plan.setup:
                lines.append(self._exec(plan, step))

            for repo_plan in scope_plan.repo_plans:
                lines.append('')
                lines.extend(self._exec(plan, step) for step in repo_plan.pre_migrate)
                lines.append(
                    f'$MigrationID = ExecAndGetMigrationID '
                    f'{{ {self.command_line(plan, repo_plan.migrate)} }}'
                )
                lines.append(f'$RepoMigrations[{quote(repo_plan.job_key)}] = $MigrationID')

        # Pass 2: waits and post-migration batches, in queueing order
        for new_org, scope_plan in self._org_changes(plan.scopes):
            if new_org:
                lines.append('')
                lines.append(
                    f'# =========== Waiting for all migrations to finish for '
                    f'Organization: {scope_plan.scope.org} ==========='
                )
            for repo_plan in scope_plan.repo_plans:
                lines.extend(self._render_wait(plan, scope_plan, repo_plan))

        lines.extend(
            [
                '',
                'Write-Host =============== Summary ===============',
                'Write-Host Total number of successful migrations: $Succeeded',
                'Write-Host Total number of failed migrations: $Failed',
                SUMMARY_BLOCK,
            ]
        )
        return lines

    def _render_wait(
        self, plan: ExecutionPlan, scope_plan: ScopePlan, repo_plan: RepoPlan
    ) -> List[str]:
        scope = scope_plan.scope
        where = (
            f'Team Project: {scope.project}' if scope.project else f'Organization: {scope.org}'
        )
        handle = f'$RepoMigrations[{quote(repo_plan.job_key)}]'

        wait = [plan.cli_command, 'wait-for-migration']
        if plan.target_api_url:
            wait.extend(['--target-api-url', quote(plan.target_api_url)])
        wait.extend(['--migration-id', handle])

        lines = [
            '',
            f'# === Waiting for repo migration to finish for {where} and Repo: '
            f'{repo_plan.repo.source_name}. Will then complete the below post migration '
            f'steps. ===',
            '$CanExecuteBatch = $false',
            f'if ($null -ne {handle}) {{',
            f'{INDENT}{" ".join(wait)}',
            f'{INDENT}$CanExecuteBatch = ($lastexitcode -eq 0)',
            '}',
            'if ($CanExecuteBatch) {',
        ]

        if repo_plan.post_migrate:
            lines.append(f'{INDENT}ExecBatch @(')
            for step in repo_plan.post_migrate:
                lines.append(f'{INDENT * 2}{{ {self.command_line(plan, step)} }}')
            lines.append(f'{INDENT})')
            lines.append(
                f'{INDENT}if ($Global:LastBatchFailures -eq 0) {{ $Succeeded++ }} '
                f'else {{ $Failed++ }}'
            )
        else:
            lines.append(f'{INDENT}$Succeeded++')

        lines.extend(['} else {', f'{INDENT}$Failed++', '}'])
        return lines
