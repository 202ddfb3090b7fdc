"""DeviceLink Server Configuration."""

import secrets
from pathlib import Path

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Server
    server_name: str = "DeviceLink Server"
    host: str = "0.0.0.0"
    port: int = 8080
    debug: bool = False
    log_level: str = "INFO"
    cors_origins: list[str] = ["*"]

    # Paths
    data_dir: Path = Path.home() / "devicelink" / "data"

    # Database
    db_path: Path = Path.home() / "devicelink" / "data" / "devicelink.db"
    database_url: str = ""  # overrides db_path, e.g. postgresql+psycopg://...

    # Web session JWT (minted by the host's login system)
    jwt_secret: str = ""
    jwt_algorithm: str = "HS256"
    session_token_expire_minutes: int = 1440  # 24 hours

    # Pairing
    pairing_code_length: int = 6
    pairing_code_ttl_seconds: int = 600  # 10 minutes
    pairing_retention_hours: int = 24

    # Device tokens
    device_token_ttl_hours: int = 24
    validation_cache_ttl_seconds: int = 0  # 0 disables the cache

    # Maintenance
    cleanup_interval_seconds: int = 3600  # 0 disables the sweeper
    admin_token: str = ""

    model_config = {"env_prefix": "DEVICELINK_"}

    @property
    def sqlalchemy_url(self) -> str:
        return self.database_url or f"sqlite:///{self.db_path}"

    def ensure_dirs(self) -> None:
        """Create all required directories."""
        for d in [self.data_dir, self.db_path.parent]:
            d.mkdir(parents=True, exist_ok=True)

    def ensure_secrets(self) -> None:
        """Generate secrets if not set, persist to file so they survive restarts."""
        secrets_file = self.data_dir / ".secrets"
        saved = {}
        if secrets_file.exists():
            for line in secrets_file.read_text().strip().splitlines():
                if "=" in line:
                    k, v = line.split("=", 1)
                    saved[k.strip()] = v.strip()

        if not self.jwt_secret:
            self.jwt_secret = saved.get("jwt_secret", "") or secrets.token_urlsafe(32)

        # Persist for next restart
        secrets_file.write_text(f"jwt_secret={self.jwt_secret}\n")


settings = Settings()
settings.ensure_dirs()
settings.ensure_secrets()
