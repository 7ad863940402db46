"""Engine configuration injected at start-up."""

from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, SecretStr


class EngineSettings(BaseModel):
    """Read-only configuration shared by every component of the engine.

    The webhook URL is held here instead of being looked up from the process
    environment by individual jobs.
    """

    model_config = ConfigDict(frozen=True)

    webhook_url: SecretStr | None = None
    project_dir: Path = Field(default_factory=Path.cwd)
    artifact_dir: Path = Path(".pipeline/artifacts")
    max_concurrent_jobs: int = Field(default=4, ge=1)
    default_job_timeout: float = Field(default=3600, gt=0)
    protected_environments: frozenset[str] = frozenset({"production"})
    interrupt_redundant_runs: bool = False
    pipeline_url_template: str = (
        "https://ci.example.com/${CI_PROJECT_PATH}/-/pipelines/${CI_PIPELINE_ID}"
    )
    job_url_template: str = (
        "https://ci.example.com/${CI_PROJECT_PATH}/-/jobs/${CI_JOB_ID}"
    )
