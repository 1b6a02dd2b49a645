"""
VAREJO-ECF Core Configuration
Varejo Fácil endpoint URLs and application settings.
"""

from enum import Enum

from pydantic_settings import BaseSettings


class VarejoEnvironment(str, Enum):
    LOCAL = "local"
    REMOTE = "remote"


class Settings(BaseSettings):
    app_name: str = "VAREJO-ECF"
    app_version: str = "1.0.0"
    debug: bool = True
    varejo_environment: VarejoEnvironment = VarejoEnvironment.REMOTE
    host: str = "0.0.0.0"
    port: int = 8000

    request_timeout_seconds: float = 60.0
    chunk_threshold_days: int = 7
    job_max_age_hours: int = 6
    rate_limit: str = "30/minute"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()


# ─────────────────────────────────────────────────────────────
# VAREJO FÁCIL URL REGISTRY
# The service is a SOAP 1.1 ASMX endpoint exposing ConsultaEcf.
# LOCAL is the in-store network address used behind the dev proxy.
# ─────────────────────────────────────────────────────────────

SOAP_ACTION_CONSULTA_ECF = "http://tempuri.org/ConsultaEcf"

VAREJO_URLS = {
    VarejoEnvironment.LOCAL: {
        "consulta_ecf": "http://10.0.10.35/TmConsultoria/VarejoFacil.asmx",
    },
    VarejoEnvironment.REMOTE: {
        "consulta_ecf": "http://38.0.0.57/TmConsultoria/VarejoFacil.asmx",
    },
}


def get_service_url(service: str) -> str:
    """Get the Varejo Fácil URL for a service based on current environment."""
    env = settings.varejo_environment
    urls = VAREJO_URLS.get(env)
    if not urls:
        raise ValueError(f"Unknown Varejo environment: {env}")
    url = urls.get(service)
    if not url:
        raise ValueError(f"Unknown Varejo service: {service}")
    return url
