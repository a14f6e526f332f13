from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Dict, Iterable, Optional


ENV_LEDGER_URL = "PAYROLL_LEDGER_URL"
ENV_COMPUTE_URL = "PAYROLL_COMPUTE_URL"
ENV_ACCOUNT = "PAYROLL_ACCOUNT"
ENV_LEDGER_TARGET = "PAYROLL_LEDGER_TARGET"  # optional; else fetched from the gateway
ENV_STATUS_TTL = "PAYROLL_STATUS_TTL"
ENV_CONFIRM_TIMEOUT = "PAYROLL_CONFIRM_TIMEOUT"
ENV_PARAM_PREFIX = "PARAM_PREFIX"  # optional; enables SSM lookup of API tokens

DEFAULT_STATUS_TTL = 3.0
DEFAULT_CONFIRM_TIMEOUT = 300.0

SSM_TOKEN_NAMES = ["ledger_api_token", "compute_api_token"]


@dataclass(frozen=True)
class Settings:
    ledger_url: str
    compute_url: str
    account: str
    ledger_target: Optional[str] = None
    ledger_api_token: Optional[str] = None
    compute_api_token: Optional[str] = None
    status_ttl: float = DEFAULT_STATUS_TTL
    confirm_timeout: float = DEFAULT_CONFIRM_TIMEOUT


def _getenv(name: str, default: Optional[str] = None) -> Optional[str]:
    val = os.environ.get(name)
    return val if val not in (None, "") else default


def _require(v: Optional[str], what: str) -> str:
    if not v:
        raise RuntimeError(f"Missing required configuration: {what}")
    return v


def _positive_float(raw: Optional[str], default: float, what: str) -> float:
    if raw is None:
        return default
    try:
        val = float(raw)
    except ValueError as ex:
        raise RuntimeError(f"Invalid configuration for {what}: {raw!r}") from ex
    if val <= 0:
        raise RuntimeError(f"Invalid configuration for {what}: must be > 0")
    return val


def _load_ssm_params(prefix: str, names: Iterable[str]) -> Dict[str, Optional[str]]:
    import boto3
    from botocore.exceptions import ClientError

    ssm = boto3.client("ssm")
    out: Dict[str, Optional[str]] = {k: None for k in names}
    for name in names:
        full = f"{prefix}{name}"
        try:
            resp = ssm.get_parameter(Name=full, WithDecryption=True)
        except ClientError as e:
            # Leave as None if parameter missing or access denied
            code = e.response.get("Error", {}).get("Code")
            if code in ("ParameterNotFound", "AccessDeniedException"):
                out[name] = None
                continue
            raise
        val = resp.get("Parameter", {}).get("Value")
        out[name] = val if isinstance(val, str) and val != "" else None
    return out


def load_settings() -> Settings:
    """Resolve settings from the environment, plus API tokens from SSM when PARAM_PREFIX is set."""
    ledger_url = _require(_getenv(ENV_LEDGER_URL), ENV_LEDGER_URL)
    compute_url = _require(_getenv(ENV_COMPUTE_URL), ENV_COMPUTE_URL)
    account = _require(_getenv(ENV_ACCOUNT), ENV_ACCOUNT)

    tokens: Dict[str, Optional[str]] = {k: None for k in SSM_TOKEN_NAMES}
    prefix = _getenv(ENV_PARAM_PREFIX)
    if prefix:
        tokens = _load_ssm_params(prefix, SSM_TOKEN_NAMES)

    return Settings(
        ledger_url=ledger_url,
        compute_url=compute_url,
        account=account,
        ledger_target=_getenv(ENV_LEDGER_TARGET),
        ledger_api_token=tokens.get("ledger_api_token"),
        compute_api_token=tokens.get("compute_api_token"),
        status_ttl=_positive_float(_getenv(ENV_STATUS_TTL), DEFAULT_STATUS_TTL, ENV_STATUS_TTL),
        confirm_timeout=_positive_float(_getenv(ENV_CONFIRM_TIMEOUT), DEFAULT_CONFIRM_TIMEOUT, ENV_CONFIRM_TIMEOUT),
    )


__all__ = ["Settings", "load_settings"]
