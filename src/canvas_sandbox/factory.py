from canvas_sandbox.config import SandboxConfig
from canvas_sandbox.runtime import SandboxProvider
from canvas_sandbox.runtimes.docker import DockerProvider


class SandboxFactory:
    """
    Factory to create SandboxProvider instances based on configuration.
    """

    @staticmethod
    def get_provider(config: SandboxConfig) -> SandboxProvider:
        """
        Returns an instance of the configured SandboxProvider.
        """
        if config.provider == "docker":
            return DockerProvider(
                image=config.docker_image,
                project_root=config.project_root,
                public_host=config.public_host,
                disk_quota=config.docker_disk_quota,
            )
        else:
            # Unreachable due to Pydantic validation
            raise ValueError(f"Unknown provider: {config.provider}")  # pragma: no cover
