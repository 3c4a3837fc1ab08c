from __future__ import annotations

import pytest

from pbx_insights.domain.exceptions import SecretsError
from pbx_insights.domain.phone import TrunkRule
from pbx_insights.ports.secrets import SecretsPort
from pbx_insights.services.session import SessionConfig, SessionService


class FakeSecrets(SecretsPort):
    def __init__(self, values: dict[tuple[str | None, str], str | None]) -> None:
        self._values = values
        self.calls: list[tuple[str, str, str | None]] = []

    def get_secret(self, key: str, tenant_id: str | None = None) -> str:
        self.calls.append(("get", key, tenant_id))
        try:
            value = self._values[(tenant_id, key)]
        except KeyError as exc:
            raise SecretsError(f"Missing secret {key!r} for tenant {tenant_id!r}") from exc
        if value is None:
            raise SecretsError(f"Secret {key!r} for tenant {tenant_id!r} is not set")
        return value

    def get_optional_secret(self, key: str, tenant_id: str | None = None) -> str | None:
        self.calls.append(("get_optional", key, tenant_id))
        return self._values.get((tenant_id, key))


def test_resolve_adds_scheme_and_reads_optional_settings() -> None:
    secrets = FakeSecrets(
        {
            ("acme", "PBX_HOST"): "pbx.acme.example:8088/",
            ("acme", "PBX_ACCESS_TOKEN"): "token-abc",
            ("acme", "PBX_PROXY_URL"): "https://proxy.example/",
            ("acme", "PBX_DATE_FORMAT"): "dmy-24h",
            ("acme", "PBX_TRUNK_RULES"): "+27:0,+44:0",
            ("acme", "PBX_REQUEST_TIMEOUT"): "12.5",
        }
    )
    service = SessionService(secrets, default_tenant="acme")

    config = service.resolve()

    assert isinstance(config, SessionConfig)
    assert config.tenant_id == "acme"
    assert config.pbx_host == "https://pbx.acme.example:8088"
    assert config.access_token == "token-abc"
    assert config.proxy_url == "https://proxy.example"
    assert config.date_format == "dmy-24h"
    assert config.trunk_rules == [TrunkRule("+27", "0"), TrunkRule("+44", "0")]
    assert config.request_timeout == 12.5


def test_resolve_defaults_when_optional_settings_missing() -> None:
    secrets = FakeSecrets({("b", "PBX_HOST"): "http://10.0.0.5", ("b", "PBX_ACCESS_TOKEN"): "t"})

    config = SessionService(secrets).resolve("b")

    assert config.pbx_host == "http://10.0.0.5"
    assert config.proxy_url is None
    assert config.date_format is None
    assert config.trunk_rules == [TrunkRule("+27", "0")]
    assert config.request_timeout == 30


def test_resolve_requires_host_and_token() -> None:
    secrets = FakeSecrets({("c", "PBX_HOST"): "pbx.example"})

    with pytest.raises(SecretsError, match="PBX_ACCESS_TOKEN"):
        SessionService(secrets).resolve("c")


def test_resolve_rejects_malformed_values() -> None:
    base = {("d", "PBX_HOST"): "pbx.example", ("d", "PBX_ACCESS_TOKEN"): "t"}

    with pytest.raises(SecretsError, match="PBX_TRUNK_RULES"):
        SessionService(FakeSecrets({**base, ("d", "PBX_TRUNK_RULES"): "nonsense"})).resolve("d")
    with pytest.raises(SecretsError, match="PBX_REQUEST_TIMEOUT"):
        SessionService(FakeSecrets({**base, ("d", "PBX_REQUEST_TIMEOUT"): "soon"})).resolve("d")


def test_resolve_requires_tenant_id_when_default_missing() -> None:
    service = SessionService(FakeSecrets({}), default_tenant="")

    with pytest.raises(SecretsError, match="Tenant id is required"):
        service.resolve()
