"""Integration tests for the local shell runtime."""

import asyncio
from pathlib import Path

import pytest

from pipeline_orchestrator.errors import RuntimeProvisionFailure
from pipeline_orchestrator.runtimes.local import LocalRuntime, LocalRuntimeConfig


@pytest.fixture
def runtime(tmp_path: Path) -> LocalRuntime:
    """Create a local runtime working in a temporary directory."""
    return LocalRuntime(config=LocalRuntimeConfig(workdir=tmp_path))


async def test_runs_script_with_variables(runtime: LocalRuntime) -> None:
    """Runs every line with the exported variables and captures output."""
    result = await runtime.execute(
        None, ['echo "deploying to $TARGET_ENV"', "echo done"], {"TARGET_ENV": "dev"}, []
    )

    assert result.exit_code == 0
    assert result.output == "deploying to dev\ndone\n"


async def test_stops_at_first_failing_line(runtime: LocalRuntime) -> None:
    """Returns the failing exit code without running later lines."""
    result = await runtime.execute(None, ["echo first", "exit 3", "echo never"], {}, [])

    assert result.exit_code == 3
    assert "never" not in result.output


async def test_runs_in_workdir(runtime: LocalRuntime, tmp_path: Path) -> None:
    """Writes files relative to the configured workdir."""
    await runtime.execute(None, ["echo tag > image_tag.txt"], {}, [])

    assert (tmp_path / "image_tag.txt").read_text() == "tag\n"


async def test_missing_shell_is_provision_failure(tmp_path: Path) -> None:
    """Raises RuntimeProvisionFailure when the shell cannot be started."""
    runtime = LocalRuntime(
        config=LocalRuntimeConfig(shell=str(tmp_path / "no-such-shell"), workdir=tmp_path)
    )

    with pytest.raises(RuntimeProvisionFailure):
        await runtime.execute(None, ["true"], {}, [])


async def test_cancel_kills_process(runtime: LocalRuntime) -> None:
    """Kills the subprocess when the execution is canceled."""
    with pytest.raises(TimeoutError):
        await asyncio.wait_for(runtime.execute(None, ["sleep 30"], {}, []), 0.2)


async def test_isolated_environment(tmp_path: Path) -> None:
    """Exports only the job variables when the host environment is not inherited."""
    runtime = LocalRuntime(config=LocalRuntimeConfig(workdir=tmp_path, inherit_env=False))

    result = await runtime.execute(
        None, ['echo "${HOME:-unset} $CI_JOB_NAME"'], {"CI_JOB_NAME": "build"}, []
    )

    assert result.output == "unset build\n"
