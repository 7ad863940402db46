"""Pydantic models for SonarQube API responses."""

from typing import Literal

from pydantic import BaseModel, Field

type GateStatus = Literal["OK", "WARN", "ERROR", "NONE"]


class ProjectStatus(BaseModel):
    """Quality-gate status of a project."""

    status: GateStatus


class ProjectStatusResponse(BaseModel):
    """Response of GET api/qualitygates/project_status."""

    project_status: ProjectStatus = Field(..., alias="projectStatus")
