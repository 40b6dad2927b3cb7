import os
from dataclasses import dataclass
from typing import Optional


def _int_env(name: str, default: int) -> int:
    raw = str(os.getenv(name, str(default))).strip()
    try:
        return int(raw)
    except Exception:
        return default


def _float_env(name: str, default: float) -> float:
    raw = str(os.getenv(name, str(default))).strip()
    try:
        return float(raw)
    except Exception:
        return default


def _str_env(name: str, default: str) -> str:
    return str(os.getenv(name, default)).strip()


# 10 GiB, expressed in MiB
DEFAULT_VOLUME_SIZE_MB = 10 * 1024


@dataclass
class VolapiConfig:
    bind_host: str = "0.0.0.0"
    api_port: int = 8080
    database_url: str = "sqlite:///./data/volapi.db"
    vmapi_url: str = "http://vmapi.local"
    papi_url: str = "http://papi.local"
    imgapi_url: str = "http://imgapi.local"
    napi_url: str = "http://napi.local"
    http_timeout_seconds: float = 10.0
    vm_job_poll_interval_seconds: float = 1.0
    vm_job_timeout_seconds: float = 600.0
    ref_update_max_tries: int = 5
    ref_update_retry_delay_seconds: float = 0.1
    default_volume_size_mb: int = DEFAULT_VOLUME_SIZE_MB
    log_level: str = "INFO"
    log_file: Optional[str] = None


def load_config() -> VolapiConfig:
    """Build the service configuration from VOLAPI_* environment variables."""
    defaults = VolapiConfig()
    return VolapiConfig(
        bind_host=_str_env("VOLAPI_BIND_HOST", defaults.bind_host),
        api_port=_int_env("VOLAPI_API_PORT", defaults.api_port),
        database_url=_str_env("VOLAPI_DATABASE_URL", defaults.database_url),
        vmapi_url=_str_env("VOLAPI_VMAPI_URL", defaults.vmapi_url),
        papi_url=_str_env("VOLAPI_PAPI_URL", defaults.papi_url),
        imgapi_url=_str_env("VOLAPI_IMGAPI_URL", defaults.imgapi_url),
        napi_url=_str_env("VOLAPI_NAPI_URL", defaults.napi_url),
        http_timeout_seconds=_float_env("VOLAPI_HTTP_TIMEOUT", defaults.http_timeout_seconds),
        vm_job_poll_interval_seconds=_float_env(
            "VOLAPI_VM_JOB_POLL_INTERVAL", defaults.vm_job_poll_interval_seconds
        ),
        vm_job_timeout_seconds=_float_env("VOLAPI_VM_JOB_TIMEOUT", defaults.vm_job_timeout_seconds),
        ref_update_max_tries=_int_env("VOLAPI_REF_UPDATE_MAX_TRIES", defaults.ref_update_max_tries),
        ref_update_retry_delay_seconds=_float_env(
            "VOLAPI_REF_UPDATE_RETRY_DELAY", defaults.ref_update_retry_delay_seconds
        ),
        default_volume_size_mb=_int_env("VOLAPI_DEFAULT_VOLUME_SIZE_MB", defaults.default_volume_size_mb),
        log_level=_str_env("VOLAPI_LOG_LEVEL", defaults.log_level).upper(),
        log_file=os.getenv("VOLAPI_LOG_FILE") or None,
    )
