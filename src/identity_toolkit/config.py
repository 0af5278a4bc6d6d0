from __future__ import annotations

import dataclasses
import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .errors import ConfigError

PUBLIC_CERTS_URL = "https://www.googleapis.com/identitytoolkit/v3/relyingparty/publicKeys"
DEFAULT_WIDGET_MODE_PARAM_NAME = "mode"
DEFAULT_COOKIE_NAME = "gtoken"

# JSON config file key -> Config attribute.
_FILE_KEYS = {
    "clientId": "client_id",
    "widgetUrl": "widget_url",
    "widgetModeParamName": "widget_mode_param_name",
    "cookieName": "cookie_name",
    "serverApiKey": "server_api_key",
    "serviceAccountEmail": "service_account",
    "serviceAccountPrivateKeyFile": "pem_key_path",
    "certsUrl": "certs_url",
    "issuers": "issuers",
    "lazyCerts": "lazy_certs",
}


@dataclass
class Config:
    client_id: str = ""
    # Identity toolkit javascript widget URL; absolute URL or path.
    widget_url: str = ""
    widget_mode_param_name: str = ""
    cookie_name: str = ""
    # API key used when fetching the public certificates.
    server_api_key: str = ""
    service_account: str = ""
    # PEM private key of the service account, inline or as a file path.
    pem_key_path: str = ""
    pem_key: str = field(default="", repr=False)
    certs_url: str = PUBLIC_CERTS_URL
    issuers: list[str] = field(default_factory=list)
    lazy_certs: bool = False

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Config:
        values: dict[str, Any] = {}
        for key, value in data.items():
            attr = _FILE_KEYS.get(key)
            if attr is None:
                continue
            values[attr] = value
        issuers = values.get("issuers", [])
        if not isinstance(issuers, list) or not all(isinstance(i, str) for i in issuers):
            raise ConfigError("issuers must be a list of strings")
        if not isinstance(values.get("lazy_certs", False), bool):
            raise ConfigError("lazyCerts must be a boolean")
        for attr, value in values.items():
            if attr not in {"issuers", "lazy_certs"} and not isinstance(value, str):
                raise ConfigError(f"{attr} must be a string")
        return cls(**values)

    def normalize(self, require_service_account: bool = False) -> Config:
        """Return a copy with defaults filled in and the PEM key loaded."""
        if not self.client_id:
            raise ConfigError("missing clientId in config")
        if not self.server_api_key:
            raise ConfigError("missing serverApiKey in config")
        conf = dataclasses.replace(self, issuers=list(self.issuers))
        if not conf.widget_mode_param_name:
            conf.widget_mode_param_name = DEFAULT_WIDGET_MODE_PARAM_NAME
        if not conf.cookie_name:
            conf.cookie_name = DEFAULT_COOKIE_NAME
        if not conf.certs_url:
            conf.certs_url = PUBLIC_CERTS_URL
        if not conf.pem_key and conf.pem_key_path:
            try:
                conf.pem_key = Path(conf.pem_key_path).read_text(encoding="utf-8")
            except OSError as exc:
                raise ConfigError(f"cannot read service account key: {exc}") from exc
        if require_service_account:
            if not conf.service_account:
                raise ConfigError("missing serviceAccountEmail in config")
            if not conf.pem_key:
                raise ConfigError("missing serviceAccountPrivateKeyFile in config")
        return conf


def load_config(path: str | Path) -> Config:
    try:
        obj = json.loads(Path(path).read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ConfigError(f"config file is not valid JSON: {exc}") from exc
    if not isinstance(obj, dict):
        raise ConfigError("config must be a JSON object")
    return Config.from_dict(obj)
