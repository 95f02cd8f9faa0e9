from pathlib import Path

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    app_name: str = "Realtime Chat"
    debug: bool = False

    # Database
    db_path: Path = Path(__file__).resolve().parent.parent.parent / "chat.db"
    database_url: str = ""  # overrides db_path when set

    # Typing indicators
    typing_timeout: float = 2.0  # seconds of inactivity before "stopped typing"
    typing_stale_after: float = 5.0  # readers ignore indicators older than this

    # Conversation resolver
    resolver_max_attempts: int = 3

    # Server
    host: str = "0.0.0.0"
    port: int = 8000
    cors_origins: list[str] = ["*"]

    model_config = {
        "env_file": str(Path(__file__).resolve().parent.parent.parent / ".env"),
        "env_prefix": "CHAT_",
    }

    @property
    def sqlalchemy_url(self) -> str:
        return self.database_url or f"sqlite:///{self.db_path}"


settings = Settings()
