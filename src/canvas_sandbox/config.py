from typing import Any, Literal

from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict

from canvas_sandbox.integrations.vault import VaultIntegrator
from canvas_sandbox.models import ResourceSpec, TemplateSource


class VaultSettingsSource(PydanticBaseSettingsSource):
    """
    Custom Pydantic Settings Source that reads secrets from Vault.
    """

    def get_field_value(self, field: Any, field_name: str) -> tuple[Any, str, bool]:
        # Unused: __call__ returns the full dict.
        return None, field_name, False  # pragma: no cover

    def __call__(self) -> dict[str, Any]:
        vault = VaultIntegrator()
        secrets: dict[str, Any] = {}

        # Config Field -> Vault Key
        mapping = {
            "anthropic_api_key": "ANTHROPIC_API_KEY",
        }

        for field, key in mapping.items():
            val = vault.get_secret(key)
            if val:
                secrets[field] = val

        return secrets


class SandboxConfig(BaseSettings):
    """
    Configuration for sandbox provisioning, tool execution and the agent turn.
    """

    # Provider
    provider: Literal["docker"] = "docker"
    docker_image: str = "node:22"
    public_host: str = "localhost"
    docker_disk_quota: bool = False

    # Template
    template_url: str | None = "https://github.com/michaelshimeles/react-template"
    project_root: str = "/home/user/app"

    # Resources
    vcpus: int = 4
    memory_gib: int = 4
    disk_gib: int = 10
    sandbox_idle_timeout: float = 600.0  # 10 minutes

    # Processes inside the sandbox
    app_port: int = 3000
    install_command: list[str] = ["npm", "install", "--loglevel", "info"]
    # "{port}" is replaced with the app port at launch.
    dev_command: list[str] = ["npm", "run", "dev", "--", "--host", "0.0.0.0", "--port", "{port}"]
    package_manager: str = "npm"

    # Health check
    health_path: str = "/"
    health_timeout: float = 60.0
    health_interval: float = 1.0
    health_request_timeout: float = 5.0
    readiness_markers: list[str] = ["/@vite/client", '"ok":true', '"message":"Hello World"']
    init_template_path: str | None = None

    # In-sandbox agent
    agent_path: str = "/agent"
    agent_timeout: float = 300.0

    # Tool execution
    operation_timeout: float = 120.0

    # Sessions
    reaper_interval: float = 60.0  # Check every minute

    # Logs
    global_log_capacity: int = 500

    # Model
    anthropic_api_key: str | None = None
    model: str = "claude-haiku-4-5"
    max_tokens: int = 8192
    max_steps: int = 10
    prompt_echo_url: bool = True

    model_config = SettingsConfigDict(
        env_prefix="CANVAS_SANDBOX_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @property
    def resources(self) -> ResourceSpec:
        return ResourceSpec(vcpus=self.vcpus, memory_gib=self.memory_gib, disk_gib=self.disk_gib)

    @property
    def template(self) -> TemplateSource:
        if self.template_url:
            return TemplateSource(type="git", url=self.template_url)
        return TemplateSource(type="image", url=self.docker_image)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            VaultSettingsSource(settings_cls),
            file_secret_settings,
        )
