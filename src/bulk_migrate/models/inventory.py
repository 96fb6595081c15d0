"""Discovered inventory models."""

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class PipelineRef(BaseModel):
    """A CI/CD pipeline bound to a source repository."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., description='Pipeline path and name, e.g. \\folder\\build')
    id: Optional[int] = Field(default=None, description='Pipeline definition ID')


class RepoRef(BaseModel):
    """A source repository and the name it will have on the target."""

    model_config = ConfigDict(frozen=True)

    source_name: str = Field(..., description='Repository name on the source')
    target_name: str = Field(..., description='Repository name on the target')
    repo_id: Optional[str] = Field(default=None, description='Source repository ID')
    pipelines: List[PipelineRef] = Field(
        default_factory=list, description='Discovered pipelines, in discovery order'
    )


class ScopeUnit(BaseModel):
    """An organization, or organization + team project, holding repositories."""

    model_config = ConfigDict(frozen=True)

    org: str = Field(..., description='Source organization')
    project: Optional[str] = Field(default=None, description='Team project, if any')
    repos: List[RepoRef] = Field(default_factory=list, description='Repositories')

    @property
    def label(self) -> str:
        """Human readable scope name."""
        return f'{self.org}/{self.project}' if self.project else self.org

    @property
    def has_pipelines(self) -> bool:
        """Whether any repository in the scope has a discovered pipeline."""
        return any(repo.pipelines for repo in self.repos)
