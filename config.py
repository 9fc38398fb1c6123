import os
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional


class StorageBackend(str, Enum):
    MEMORY = "memory"
    RELATIONAL = "relational"
    DOCUMENT = "document"


@dataclass
class Settings:
    storage_backend: StorageBackend = StorageBackend.MEMORY
    database_url: Optional[str] = None
    mongodb_uri: Optional[str] = None
    mongodb_name: str = "agency"
    secret_key: str = "dev-secret-key-change-me"
    access_token_expire_minutes: int = 60 * 24
    log_level: str = "INFO"
    port: int = 8000
    employee_registration_code: str = "change-me"

    @classmethod
    def from_env(cls) -> "Settings":
        backend = os.getenv("STORAGE_BACKEND", StorageBackend.MEMORY.value).strip().lower()
        try:
            storage_backend = StorageBackend(backend)
        except ValueError:
            raise ValueError(f"Unknown STORAGE_BACKEND '{backend}', expected one of: "
                             + ", ".join(b.value for b in StorageBackend))
        return cls(
            storage_backend=storage_backend,
            database_url=os.getenv("DATABASE_URL"),
            mongodb_uri=os.getenv("MONGODB_URI"),
            mongodb_name=os.getenv("MONGODB_NAME", "agency"),
            secret_key=os.getenv("SECRET_KEY", "dev-secret-key-change-me"),
            access_token_expire_minutes=int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", 60 * 24)),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            port=int(os.getenv("PORT", 8000)),
            employee_registration_code=os.getenv("EMPLOYEE_REGISTRATION_CODE", "change-me"),
        )


def configure_logging(level: str = "INFO"):
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
