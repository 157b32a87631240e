import os
import tomllib
from pathlib import Path
from urllib.parse import urlsplit

from pydantic import BaseModel, ConfigDict, Field, PositiveFloat, PositiveInt, ValidationError

from rippled_remote.constants import CONNECT_TIMEOUT, DEFAULT_FEE_CUSHION, RECONNECT_BASE, RECONNECT_MAX
from rippled_remote.errors import ConfigurationError

pkg_root = Path(__file__).parent
config_file = pkg_root / "config.toml"


class ServerConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    host: str
    port: PositiveInt
    secure: bool = False
    pool: PositiveInt = 1
    primary: bool = False

    @property
    def url(self) -> str:
        return f"{'wss' if self.secure else 'ws'}://{self.host}:{self.port}"

    @classmethod
    def from_url(cls, url: str, **kwargs) -> "ServerConfig":
        parts = urlsplit(url.strip())
        if parts.scheme not in ("ws", "wss") or not parts.hostname:
            raise ConfigurationError("invalidServer", f"Bad server URL: {url!r}")
        secure = parts.scheme == "wss"
        return cls(host=parts.hostname, port=parts.port or (443 if secure else 80), secure=secure, **kwargs)


class AccountSecret(BaseModel):
    account: str
    secret: str


class ServiceConfig(BaseModel):
    host: str = "0.0.0.0"
    port: PositiveInt = 8000


class RemoteConfig(BaseModel):
    servers: list[ServerConfig] = Field(default_factory=list)
    trusted: bool = False
    local_signing: bool = True
    local_sequence: bool | None = None
    local_fee: bool | None = None
    fee_cushion: PositiveFloat = DEFAULT_FEE_CUSHION
    reconnect_base: PositiveFloat = RECONNECT_BASE
    reconnect_max: PositiveFloat = RECONNECT_MAX
    connect_timeout: PositiveFloat = CONNECT_TIMEOUT
    accounts: dict[str, AccountSecret] = Field(default_factory=dict)
    service: ServiceConfig = Field(default_factory=ServiceConfig)


# env var -> config key, applied over the file
ENV_OVERRIDES = {
    "RIPPLED_TRUSTED": "trusted",
    "RIPPLED_LOCAL_SIGNING": "local_signing",
    "RIPPLED_FEE_CUSHION": "fee_cushion",
}


def load_config(path: str | Path | None = None, env: dict[str, str] | None = None) -> RemoteConfig:
    """Read ``config.toml`` (or ``path``), apply environment overrides and validate."""
    env = os.environ if env is None else env
    path = Path(path) if path is not None else config_file
    try:
        raw = tomllib.loads(path.read_text())
    except (OSError, tomllib.TOMLDecodeError) as e:
        raise ConfigurationError("invalidConfig", f"Cannot read {path}: {e}") from e

    try:
        if servers := env.get("RIPPLED_SERVERS"):
            raw["servers"] = [ServerConfig.from_url(url).model_dump() for url in servers.split(",") if url.strip()]
        for var, key in ENV_OVERRIDES.items():
            if (value := env.get(var)) is not None:
                raw[key] = value
        return RemoteConfig.model_validate(raw)
    except ValidationError as e:
        raise ConfigurationError("invalidConfig", str(e)) from e
