"""Azure DevOps read-only inventory operations."""

from typing import Any, Dict, List, Optional
from urllib.parse import quote

from loguru import logger
from pydantic import BaseModel, Field

from .client import ApiClient

API_VERSION = '6.1-preview.1'
SERVICE_ENDPOINTS_API_VERSION = '6.0-preview.4'
CONTINUATION_HEADER = 'x-ms-continuationtoken'


class AdoRepository(BaseModel):
    """A git repository in a team project."""

    id: str = Field(..., description='Repository ID')
    name: str = Field(..., description='Repository name')
    size: int = Field(default=0, description='Size in bytes')
    is_disabled: bool = Field(default=False, description='Repository is disabled')


def pipeline_display_name(path: Optional[str], name: str) -> str:
    """Pipeline name the way Azure DevOps shows it, root folder collapsed."""
    path = '' if not path or path == '\\' else path
    return f'{path}\\{name}'


class AdoApi:
    """Azure DevOps operations on top of :class:`ApiClient`."""

    def __init__(self, client: ApiClient):
        self.client = client
        self.logger = logger.bind(component='AdoApi')

    async def _get_paged(
        self, endpoint: str, params: Optional[Dict[str, Any]] = None
    ) -> List[Dict[str, Any]]:
        """Follow continuation tokens and collect every ``value`` item."""
        items: List[Dict[str, Any]] = []
        query = dict(params or {})

        while True:
            response = await self.client.get(endpoint, params=query)
            body = response.data or {}
            items.extend(body.get('value') or [])

            headers = {k.lower(): v for k, v in response.headers.items()}
            token = headers.get(CONTINUATION_HEADER)
            if not token:
                return items
            query['continuationToken'] = token

    async def get_team_projects(self, org: str) -> List[str]:
        """Names of every team project in an organization."""
        values = await self._get_paged(
            f'/{quote(org)}/_apis/projects', {'api-version': API_VERSION}
        )
        return [value['name'] for value in values]

    async def get_repos(self, org: str, team_project: str) -> List[AdoRepository]:
        """Every git repository in a team project."""
        values = await self._get_paged(
            f'/{quote(org)}/{quote(team_project)}/_apis/git/repositories',
            {'api-version': API_VERSION},
        )
        return [
            AdoRepository(
                id=value['id'],
                name=value['name'],
                size=value.get('size') or 0,
                is_disabled=bool(value.get('isDisabled', False)),
            )
            for value in values
        ]

    async def get_enabled_repos(self, org: str, team_project: str) -> List[AdoRepository]:
        """Git repositories that can be migrated; disabled ones are left out."""
        return [repo for repo in await self.get_repos(org, team_project) if not repo.is_disabled]

    async def get_pipelines(self, org: str, team_project: str, repo_id: str) -> List[Dict[str, Any]]:
        """Build definitions bound to a repository.

        Returns:
            Dicts with ``name`` (``path\\name``) and ``id``
        """
        values = await self._get_paged(
            f'/{quote(org)}/{quote(team_project)}/_apis/build/definitions',
            {
                'repositoryId': repo_id,
                'repositoryType': 'TfsGit',
                'queryOrder': 'lastModifiedDescending',
            },
        )
        return [
            {'name': pipeline_display_name(value.get('path'), value['name']), 'id': value.get('id')}
            for value in values
        ]

    async def get_github_app_id(
        self, org: str, github_org: str, team_projects: List[str]
    ) -> Optional[str]:
        """Id of the GitHub app service connection shared by the organization.

        The first team project holding a GitHub connection named after the
        target org, or a GitHub Pipelines app connection named after the team
        project, wins.
        """
        for team_project in team_projects:
            values = await self._get_paged(
                f'/{quote(org)}/{quote(team_project)}/_apis/serviceendpoint/endpoints',
                {'api-version': SERVICE_ENDPOINTS_API_VERSION},
            )
            for endpoint in values:
                endpoint_type = (endpoint.get('type') or '').lower()
                endpoint_name = (endpoint.get('name') or '').lower()
                if (endpoint_type == 'github' and endpoint_name == github_org.lower()) or (
                    endpoint_type == 'githubproximapipelines'
                    and endpoint_name == team_project.lower()
                ):
                    self.logger.debug(
                        f'Found GitHub app connection {endpoint["id"]} in {org}/{team_project}'
                    )
                    return endpoint['id']

        return None
