"""Channel credential resolution."""

from __future__ import annotations

import os
import re
from collections.abc import Mapping
from dataclasses import dataclass, field

_FIELDS = (
    "account_sid",
    "auth_token",
    "access_token",
    "phone_number_id",
    "from_number",
    "api_version",
)


@dataclass(frozen=True)
class ChannelCredentials:
    """Secrets and sender ids needed to call a provider API."""

    ref: str
    account_sid: str | None = None
    auth_token: str | None = None
    access_token: str | None = None
    phone_number_id: str | None = None
    from_number: str | None = None
    api_version: str | None = None
    extras: dict[str, str] = field(default_factory=dict)

    def require(self, *names: str) -> None:
        missing = [name for name in names if not getattr(self, name)]
        if missing:
            raise MissingCredentialsError(
                f"credentials {self.ref!r} lack {', '.join(missing)}"
            )


class MissingCredentialsError(RuntimeError):
    pass


def _env_prefix(ref: str) -> str:
    return "CHANNEL_" + re.sub(r"[^A-Z0-9]+", "_", ref.upper()).strip("_") + "_"


class CredentialRegistry:
    """Resolve a channel account's ``credentials_ref`` to credentials.

    The lookup order prefers explicit overrides (e.g. injected during
    testing) and falls back to environment variables named
    ``CHANNEL_<REF>_<FIELD>``, e.g. ``CHANNEL_ACME_SMS_AUTH_TOKEN``.
    Non-secret values from the account's ``config`` fill any gap.
    """

    def __init__(self, overrides: Mapping[str, Mapping[str, str]] | None = None):
        self._overrides = {k.lower(): dict(v) for k, v in (overrides or {}).items()}

    def get_credentials(
        self, ref: str | None, config: Mapping[str, object] | None = None
    ) -> ChannelCredentials:
        key = (ref or "default").lower()
        values: dict[str, str] = {}
        if key in self._overrides:
            values.update(self._overrides[key])
        else:
            prefix = _env_prefix(key)
            for name in _FIELDS:
                value = os.getenv(prefix + name.upper())
                if value:
                    values[name] = value
        for name, value in (config or {}).items():
            if name in _FIELDS and name not in values and value:
                values[name] = str(value)
        return ChannelCredentials(
            ref=key,
            **{name: values.get(name) for name in _FIELDS},
            extras={k: v for k, v in values.items() if k not in _FIELDS},
        )


__all__ = [
    "ChannelCredentials",
    "CredentialRegistry",
    "MissingCredentialsError",
]
