from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    retell_api_key: str
    retell_from_number: str
    retell_base_url: str = "https://api.retellai.com"
    provider_timeout_seconds: float = 10.0
    log_level: str = "INFO"

    failure_timeout_minutes: int = 15
    failure_check_interval_seconds: float = 300.0

    worker_pool_size: int = 10
    live_polling_enabled: bool = True
    poll_interval_seconds: float = 3.0
    poll_ceiling_minutes: float = 10.0
    transcript_ttl_days: int = 90

    trigger_disarm_attempts: int = 3
