from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic_settings.sources import PydanticBaseSettingsSource


_TRUE_VALUES = {"1", "true", "yes", "on", "dev", "debug", "development", "enabled"}
_FALSE_VALUES = {"0", "false", "no", "off", "release", "prod", "production", "disabled"}


class Settings(BaseSettings):
    APP_NAME: str = "conductor"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    BACKEND_HOST: str = "0.0.0.0"
    BACKEND_PORT: int = 8030
    ORCHESTRATOR_VERSION: str = "4.0.0"

    WORKFLOW_CATALOG_PATH: str = "catalog/workflows.yaml"
    WORKER_CATALOG_PATH: str = "catalog/workers.yaml"

    DEFAULT_TASK_TIMEOUT_MS: int = 30000
    HEALTH_MONITOR_ENABLED: bool = True
    HEALTH_PROBE_INTERVAL_SECONDS: float = 30.0
    HEALTH_PROBE_TIMEOUT_SECONDS: float = 5.0
    HEALTHY_WORKER_RATIO: float = 1.0
    OPTIMIZATION_INTERVAL_SECONDS: float = 300.0
    AUTO_OPTIMIZATION: bool = False
    MEMORY_WARNING_PERCENT: float = 90.0

    EXECUTION_LOG_PATH: str = ""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    @field_validator("DEBUG", "AUTO_OPTIMIZATION", "HEALTH_MONITOR_ENABLED", mode="before")
    @classmethod
    def normalize_flag(cls, value: object) -> bool:
        if isinstance(value, bool):
            return value

        if isinstance(value, str):
            normalized = value.strip().lower()
            if normalized in _TRUE_VALUES:
                return True
            if normalized in _FALSE_VALUES:
                return False

            accepted = sorted(_TRUE_VALUES | _FALSE_VALUES)
            raise ValueError("Invalid flag value. Accepted values: " + ", ".join(accepted))

        raise ValueError("Invalid flag value type. Expected bool or string.")

    @field_validator("HEALTHY_WORKER_RATIO")
    @classmethod
    def check_ratio(cls, value: float) -> float:
        if not 0.0 <= value <= 1.0:
            raise ValueError("HEALTHY_WORKER_RATIO must be between 0 and 1")
        return value

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        # init kwargs > .env file > OS environment > file secrets
        return (
            init_settings,
            dotenv_settings,
            env_settings,
            file_secret_settings,
        )
