"""GitHub REST and GraphQL operations used by migrations."""

from typing import List, Optional
from urllib.parse import quote

from loguru import logger

from ..models.migration import MigrationJob, MigrationState
from .client import ApiClient
from .exceptions import ApiError, NotFoundError

CREATE_MIGRATION_SOURCE = (
    'mutation createMigrationSource($name: String!, $url: String!, $ownerId: ID!, '
    '$type: MigrationSourceType!) { '
    'createMigrationSource(input: {name: $name, url: $url, ownerId: $ownerId, type: $type}) '
    '{ migrationSource { id, name, url, type } } }'
)

START_REPOSITORY_MIGRATION = '''
mutation startRepositoryMigration(
    $sourceId: ID!,
    $ownerId: ID!,
    $sourceRepositoryUrl: URI!,
    $repositoryName: String!,
    $continueOnError: Boolean!,
    $gitArchiveUrl: String,
    $metadataArchiveUrl: String,
    $accessToken: String!,
    $githubPat: String,
    $skipReleases: Boolean,
    $targetRepoVisibility: String,
    $lockSource: Boolean) {
  startRepositoryMigration(
    input: {
      sourceId: $sourceId,
      ownerId: $ownerId,
      sourceRepositoryUrl: $sourceRepositoryUrl,
      repositoryName: $repositoryName,
      continueOnError: $continueOnError,
      gitArchiveUrl: $gitArchiveUrl,
      metadataArchiveUrl: $metadataArchiveUrl,
      accessToken: $accessToken,
      githubPat: $githubPat,
      skipReleases: $skipReleases,
      targetRepoVisibility: $targetRepoVisibility,
      lockSource: $lockSource
    }
  ) {
    repositoryMigration { id, state, failureReason }
  }
}'''

GET_MIGRATION = '''
query($id: ID!) {
  node(id: $id) {
    ... on Migration {
      id, migrationLogUrl, state, warningsCount, failureReason, repositoryName
    }
  }
}'''

GET_FAILURE_REASON = '''
query($id: ID!) {
  node(id: $id) { ... on Migration { id, failureReason } }
}'''

GET_ORG_MIGRATIONS = '''
query($login: String!, $first: Int, $after: String) {
  organization(login: $login) {
    repositoryMigrations(first: $first, after: $after) {
      pageInfo { hasNextPage, endCursor }
      nodes { id, repositoryName, state }
    }
  }
}'''

PAGE_SIZE = 100


class GithubApi:
    """GitHub operations on top of :class:`ApiClient`."""

    def __init__(self, client: ApiClient):
        self.client = client
        self.logger = logger.bind(component='GithubApi')

    async def get_organization_id(self, org: str) -> str:
        """GraphQL node id of an organization."""
        data = await self.client.graphql(
            'query($login: String!) {organization(login: $login) { login, id, name } }',
            {'login': org},
        )
        organization = data.get('organization')
        if not organization:
            raise NotFoundError(f'Organization {org} not found')
        return organization['id']

    async def _create_migration_source(
        self, org_id: str, name: str, url: str, source_type: str
    ) -> str:
        data = await self.client.graphql(
            CREATE_MIGRATION_SOURCE,
            {'name': name, 'url': url, 'ownerId': org_id, 'type': source_type},
            operation_name='createMigrationSource',
        )
        return data['createMigrationSource']['migrationSource']['id']

    async def create_ado_migration_source(
        self, org_id: str, ado_server_url: Optional[str] = None
    ) -> str:
        """Register Azure DevOps as a migration source for an organization."""
        return await self._create_migration_source(
            org_id,
            'Azure DevOps Source',
            ado_server_url or 'https://dev.azure.com',
            'AZURE_DEVOPS',
        )

    async def create_github_migration_source(self, org_id: str) -> str:
        """Register GitHub archives as a migration source for an organization."""
        return await self._create_migration_source(
            org_id, 'GHEC Source', 'https://github.com', 'GITHUB_ARCHIVE'
        )

    async def start_migration(
        self,
        migration_source_id: str,
        source_repo_url: str,
        org_id: str,
        repo: str,
        source_token: str,
        target_token: str,
        git_archive_url: Optional[str] = None,
        metadata_archive_url: Optional[str] = None,
        skip_releases: bool = False,
        target_repo_visibility: Optional[str] = None,
        lock_source: bool = False,
    ) -> str:
        """Start a repository migration.

        Returns:
            Migration id
        """
        variables = {
            'sourceId': migration_source_id,
            'ownerId': org_id,
            'sourceRepositoryUrl': source_repo_url,
            'repositoryName': repo,
            'continueOnError': True,
            'gitArchiveUrl': git_archive_url,
            'metadataArchiveUrl': metadata_archive_url,
            'accessToken': source_token,
            'githubPat': target_token,
            'skipReleases': skip_releases,
            'targetRepoVisibility': target_repo_visibility,
            'lockSource': lock_source,
        }
        data = await self.client.graphql(
            START_REPOSITORY_MIGRATION, variables, operation_name='startRepositoryMigration'
        )
        return data['startRepositoryMigration']['repositoryMigration']['id']

    async def get_migration(self, migration_id: str) -> MigrationJob:
        """Current state of a migration."""
        data = await self.client.graphql(GET_MIGRATION, {'id': migration_id})
        node = data.get('node')
        if not node:
            raise NotFoundError(f'Migration {migration_id} not found')

        return MigrationJob(
            id=node.get('id') or migration_id,
            repository_name=node.get('repositoryName'),
            state=MigrationState.from_api(node.get('state')),
            failure_reason=node.get('failureReason'),
            warnings_count=node.get('warningsCount') or 0,
            migration_log_url=node.get('migrationLogUrl'),
        )

    async def get_migration_failure_reason(self, migration_id: str) -> Optional[str]:
        """Human readable failure reason of a migration."""
        data = await self.client.graphql(GET_FAILURE_REASON, {'id': migration_id})
        node = data.get('node') or {}
        return node.get('failureReason')

    async def get_migration_states(self, org: str) -> List[MigrationJob]:
        """Every repository migration of an organization."""
        jobs: List[MigrationJob] = []
        cursor = None

        while True:
            data = await self.client.graphql(
                GET_ORG_MIGRATIONS, {'login': org, 'first': PAGE_SIZE, 'after': cursor}
            )
            organization = data.get('organization')
            if not organization:
                raise NotFoundError(f'Organization {org} not found')

            migrations = organization['repositoryMigrations']
            for node in migrations.get('nodes') or []:
                jobs.append(
                    MigrationJob(
                        id=node['id'],
                        repository_name=node.get('repositoryName'),
                        state=MigrationState.from_api(node.get('state')),
                    )
                )

            page_info = migrations.get('pageInfo') or {}
            if not page_info.get('hasNextPage'):
                return jobs
            cursor = page_info.get('endCursor')

    async def repo_exists(self, org: str, repo: str) -> bool:
        """Check whether a repository exists."""
        try:
            await self.client.get(f'/repos/{quote(org)}/{quote(repo)}')
            return True
        except NotFoundError:
            return False

    async def delete_repo(self, org: str, repo: str) -> None:
        """Delete a repository."""
        self.logger.info(f'Deleting repository {org}/{repo}')
        await self.client.delete(f'/repos/{quote(org)}/{quote(repo)}')

    async def get_repos(self, org: str) -> List[str]:
        """Names of every repository in an organization."""
        names: List[str] = []
        page = 1

        while True:
            response = await self.client.get(
                f'/orgs/{quote(org)}/repos', params={'per_page': PAGE_SIZE, 'page': page}
            )
            batch = response.data or []
            names.extend(repo['name'] for repo in batch)
            if len(batch) < PAGE_SIZE:
                return names
            page += 1

    async def start_git_archive_generation(self, org: str, repo: str) -> int:
        """Start exporting git data only."""
        response = await self.client.post(
            f'/orgs/{quote(org)}/migrations',
            data={'repositories': [repo], 'exclude_metadata': True},
        )
        return int(response.data['id'])

    async def start_metadata_archive_generation(
        self, org: str, repo: str, skip_releases: bool = False, lock_source: bool = False
    ) -> int:
        """Start exporting metadata only."""
        response = await self.client.post(
            f'/orgs/{quote(org)}/migrations',
            data={
                'repositories': [repo],
                'exclude_git_data': True,
                'exclude_releases': skip_releases,
                'lock_repositories': lock_source,
                'exclude_owner_projects': True,
            },
        )
        return int(response.data['id'])

    async def get_archive_migration_status(self, org: str, archive_id: int) -> str:
        """Raw export state, e.g. pending, exporting, exported or failed."""
        response = await self.client.get(f'/orgs/{quote(org)}/migrations/{archive_id}')
        return response.data['state']

    async def get_archive_migration_url(self, org: str, archive_id: int) -> str:
        """Short-lived download URL of an exported archive."""
        response = await self.client.get(
            f'/orgs/{quote(org)}/migrations/{archive_id}/archive', allow_redirects=False
        )
        location = response.headers.get('Location') or response.headers.get('location')
        if not location:
            raise ApiError(
                f'No download location returned for archive {archive_id}',
                status_code=response.status_code,
            )
        return location
