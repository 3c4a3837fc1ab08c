"""Environment-based secrets adapter."""
from __future__ import annotations

import os
import re
from typing import Mapping, Optional

from pbx_insights.domain.exceptions import SecretsError
from pbx_insights.ports.secrets import SecretsPort

_INVALID_ENV_CHARS = re.compile(r"[^A-Z0-9]+")


class EnvSecretsAdapter(SecretsPort):
    """Reads PBX settings from environment variables.

    ``PBX_HOST`` for tenant ``acme-sa`` is looked up as ``ACME_SA_PBX_HOST``
    (after the optional prefix) and then as plain ``PBX_HOST``.
    """

    def __init__(self, prefix: str = "", environ: Optional[Mapping[str, str]] = None) -> None:
        self._prefix = prefix
        self._environ = environ if environ is not None else os.environ

    def _build_key(self, key: str, tenant_id: Optional[str]) -> str:
        parts = [self._prefix] if self._prefix else []
        if tenant_id:
            parts.append(_INVALID_ENV_CHARS.sub("_", tenant_id.upper()).strip("_"))
        parts.append(key)
        return "_".join(part for part in parts if part)

    def get_secret(self, key: str, tenant_id: Optional[str] = None) -> str:
        value = self.get_optional_secret(key, tenant_id)
        if value is None:
            raise SecretsError(f"Missing setting {self._build_key(key, tenant_id)!r} (tenant={tenant_id or 'default'})")
        return value

    def get_optional_secret(self, key: str, tenant_id: Optional[str] = None) -> Optional[str]:
        value = self._environ.get(self._build_key(key, tenant_id))
        if value:
            return value
        if tenant_id:
            value = self._environ.get(self._build_key(key, None))
        return value or None
