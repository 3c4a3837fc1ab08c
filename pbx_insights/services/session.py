"""PBX session configuration service."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional

from pbx_insights import config
from pbx_insights.domain.exceptions import SecretsError
from pbx_insights.domain.phone import TrunkRule, parse_trunk_rules
from pbx_insights.ports.secrets import SecretsPort


def _with_scheme(host: str) -> str:
    host = host.strip().rstrip("/")
    if "://" not in host:
        host = f"https://{host}"
    return host


@dataclass
class SessionConfig:
    """Connection and matching settings for one PBX."""

    tenant_id: str
    pbx_host: str
    access_token: str
    proxy_url: Optional[str] = None
    date_format: Optional[str] = None
    trunk_rules: List[TrunkRule] = field(
        default_factory=lambda: [TrunkRule(*rule) for rule in config.DEFAULT_TRUNK_RULES]
    )
    request_timeout: float = config.REQUEST_TIMEOUT


class SessionService:
    """Resolves session configuration using the secrets port."""

    def __init__(self, secrets: SecretsPort, default_tenant: str = "default") -> None:
        self._secrets = secrets
        self._default_tenant = default_tenant

    def resolve(self, tenant_id: Optional[str] = None) -> SessionConfig:
        """Return configuration for ``tenant_id`` or the default tenant."""

        tid = tenant_id or self._default_tenant
        if not tid:
            raise SecretsError("Tenant id is required")
        host = self._secrets.get_secret("PBX_HOST", tenant_id=tid)
        token = self._secrets.get_secret("PBX_ACCESS_TOKEN", tenant_id=tid)
        proxy = self._secrets.get_optional_secret("PBX_PROXY_URL", tenant_id=tid)
        date_format = self._secrets.get_optional_secret("PBX_DATE_FORMAT", tenant_id=tid)

        session = SessionConfig(
            tenant_id=tid,
            pbx_host=_with_scheme(host),
            access_token=token,
            proxy_url=proxy.rstrip("/") if proxy else None,
            date_format=date_format or None,
        )
        rules = self._secrets.get_optional_secret("PBX_TRUNK_RULES", tenant_id=tid)
        if rules:
            parsed = parse_trunk_rules(rules)
            if not parsed:
                raise SecretsError(f"Invalid PBX_TRUNK_RULES value {rules!r} (tenant={tid})")
            session.trunk_rules = parsed
        timeout = self._secrets.get_optional_secret("PBX_REQUEST_TIMEOUT", tenant_id=tid)
        if timeout:
            try:
                session.request_timeout = float(timeout)
            except ValueError as exc:
                raise SecretsError(f"Invalid PBX_REQUEST_TIMEOUT value {timeout!r} (tenant={tid})") from exc
        return session
