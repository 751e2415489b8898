import os
import re
from dataclasses import dataclass, field
from datetime import timedelta
from typing import List

from dotenv import load_dotenv

DEFAULT_JWT_SECRET = "your-secret-key-change-in-production"

_DURATION_RE = re.compile(r"^\s*(\d+)\s*([smhd]?)\s*$")
_UNITS = {"": "seconds", "s": "seconds", "m": "minutes", "h": "hours", "d": "days"}


def parse_duration(value: str) -> timedelta:
    """Parse token lifetimes such as "7d", "12h", "30m" or "3600"."""
    match = _DURATION_RE.match(value or "")
    if not match:
        raise ValueError(f"Invalid duration: {value!r}")
    amount, unit = match.groups()
    return timedelta(**{_UNITS[unit]: int(amount)})


@dataclass(frozen=True)
class Settings:
    database_url: str = "mongodb://localhost:27017"
    database_name: str = "shopping_mall"
    jwt_secret: str = DEFAULT_JWT_SECRET
    jwt_algorithm: str = "HS256"
    jwt_expire: str = "7d"
    jwt_issuer: str = "shopping-mall-api"
    jwt_audience: str = "shopping-mall-client"
    portone_api_url: str = "https://api.iamport.kr"
    portone_api_key: str = ""
    portone_api_secret: str = ""
    payment_timeout: float = 10.0
    cors_origins: List[str] = field(default_factory=lambda: ["*"])
    log_level: str = "INFO"
    port: int = 8000

    @property
    def token_lifetime(self) -> timedelta:
        return parse_duration(self.jwt_expire)

    @property
    def uses_default_secret(self) -> bool:
        return self.jwt_secret == DEFAULT_JWT_SECRET

    @classmethod
    def from_env(cls) -> "Settings":
        load_dotenv()
        origins = os.getenv("CORS_ORIGINS", "*")
        return cls(
            database_url=os.getenv("DATABASE_URL", cls.database_url),
            database_name=os.getenv("DATABASE_NAME", cls.database_name),
            jwt_secret=os.getenv("JWT_SECRET") or DEFAULT_JWT_SECRET,
            jwt_expire=os.getenv("JWT_EXPIRE", cls.jwt_expire),
            portone_api_url=os.getenv("PORTONE_API_URL", cls.portone_api_url),
            portone_api_key=os.getenv("PORTONE_REST_API_KEY", ""),
            portone_api_secret=os.getenv("PORTONE_REST_API_SECRET", ""),
            payment_timeout=float(os.getenv("PAYMENT_GATEWAY_TIMEOUT", cls.payment_timeout)),
            cors_origins=[o.strip() for o in origins.split(",") if o.strip()],
            log_level=os.getenv("LOG_LEVEL", cls.log_level).upper(),
            port=int(os.getenv("PORT", cls.port)),
        )
