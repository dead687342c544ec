from unittest.mock import patch

from canvas_sandbox.config import SandboxConfig
from canvas_sandbox.factory import SandboxFactory
from canvas_sandbox.runtime import SandboxProvider
from canvas_sandbox.runtimes.docker import DockerProvider


def test_factory_returns_docker_provider() -> None:
    config = SandboxConfig(_env_file=None, provider="docker", public_host="sandbox.internal")
    with patch("canvas_sandbox.runtimes.docker.docker.from_env"):
        provider = SandboxFactory.get_provider(config)

    assert isinstance(provider, DockerProvider)
    assert isinstance(provider, SandboxProvider)
    assert provider.public_host == "sandbox.internal"
    assert provider.project_root == config.project_root


def test_factory_passes_disk_quota() -> None:
    config = SandboxConfig(_env_file=None, docker_disk_quota=True)
    with patch("canvas_sandbox.runtimes.docker.docker.from_env"):
        provider = SandboxFactory.get_provider(config)

    assert isinstance(provider, DockerProvider)
    assert provider.disk_quota is True
