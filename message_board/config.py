import os


class Settings:
    def __init__(self) -> None:
        # SQLite file next to the working directory unless overridden
        self.DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite:///./messages.db")
        self.LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()


settings = Settings()
