"""Application configuration via environment variables."""

from pydantic import BaseModel
from pydantic_settings import BaseSettings

from bankpay.messages import Messages
from bankpay.models.payment import GatewayAccount


class GatewayAccountSettings(BaseModel):
    """Credentials for one merchant account, as read from the environment."""

    gateway: str
    terminal_id: str
    user_name: str = ""
    user_password: str = ""
    name: str = "default"
    is_test_terminal: bool = False


class Settings(BaseSettings):
    database_url: str = "sqlite+aiosqlite:///./bankpay.db"
    log_level: str = "INFO"
    public_base_url: str = "http://localhost:8000"  # Used to build callback URLs
    gateway_timeout_seconds: float = 30.0
    verify_max_retries: int = 3
    virtual_gateway_enabled: bool = True
    virtual_failure_rate: float = 0.0
    virtual_latency_ms: int = 100  # Simulated bank latency

    # JSON list, e.g. ACCOUNTS='[{"gateway": "mellat", "terminal_id": "123", ...}]'
    accounts: list[GatewayAccountSettings] = []
    messages: Messages = Messages()
    # Per-gateway result code overrides: {"mellat": {"17": "..."}}
    result_message_overrides: dict[str, dict[str, str]] = {}

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "env_nested_delimiter": "__"}

    def gateway_accounts(self) -> list[GatewayAccount]:
        return [GatewayAccount(**account.model_dump()) for account in self.accounts]


settings = Settings()
