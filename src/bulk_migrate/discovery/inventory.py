"""Inventory discovery: enumerates what a plan will migrate."""

from typing import Dict, List, Optional

from loguru import logger

from ..api.ado import AdoApi
from ..api.github import GithubApi
from ..models.inventory import PipelineRef, ScopeUnit
from ..planning.sources import MigrationSource


class AdoInventory:
    """Team projects, enabled repositories and pipelines of ADO organizations."""

    def __init__(self, api: AdoApi, source: MigrationSource):
        self.api = api
        self.source = source
        self.logger = logger.bind(component='AdoInventory')
        self._team_projects: Dict[str, List[str]] = {}

    async def _get_team_projects(self, org: str) -> List[str]:
        if org not in self._team_projects:
            self._team_projects[org] = await self.api.get_team_projects(org)
        return self._team_projects[org]

    async def discover(
        self,
        org: str,
        team_project: Optional[str] = None,
        include_pipelines: bool = False,
    ) -> List[ScopeUnit]:
        """One scope unit per team project, in the order ADO returns them.

        A ``team_project`` filter naming a project that does not exist yields
        a single scope unit without repositories.
        """
        projects = await self._get_team_projects(org)

        if team_project:
            matching = [p for p in projects if p.lower() == team_project.lower()]
            if not matching:
                self.logger.warning(f'Team project {team_project} not found in {org}')
                return [ScopeUnit(org=org, project=team_project)]
            projects = matching

        scopes = []
        for project in projects:
            repos = []
            for repo in await self.api.get_enabled_repos(org, project):
                pipelines: List[PipelineRef] = []
                if include_pipelines:
                    pipelines = [
                        PipelineRef(name=p['name'], id=p.get('id'))
                        for p in await self.api.get_pipelines(org, project, repo.id)
                    ]
                repos.append(
                    self.source.make_repo_ref(
                        org, project, repo.name, repo_id=repo.id, pipelines=pipelines
                    )
                )

            self.logger.info(f'Found {len(repos)} repositories in {org}/{project}')
            scopes.append(ScopeUnit(org=org, project=project, repos=repos))

        return scopes

    async def resolve_connection_id(self, org: str, github_org: str) -> Optional[str]:
        """Shared GitHub app connection of an org, searched across all its projects."""
        projects = await self._get_team_projects(org)
        return await self.api.get_github_app_id(org, github_org, projects)


class GithubInventory:
    """Repositories of a GitHub or GHES organization."""

    def __init__(self, api: GithubApi, source: MigrationSource):
        self.api = api
        self.source = source
        self.logger = logger.bind(component='GithubInventory')

    async def discover(self, org: str) -> List[ScopeUnit]:
        """A single scope unit holding every repository of the org."""
        names = await self.api.get_repos(org)
        repos = [self.source.make_repo_ref(org, None, name) for name in names]
        self.logger.info(f'Found {len(repos)} repositories in {org}')
        return [ScopeUnit(org=org, repos=repos)]
