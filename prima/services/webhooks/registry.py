"""Provider adapter registry."""

from __future__ import annotations

from prima.services.webhooks.base import ProviderAdapter
from prima.services.webhooks.fonnte import FonnteAdapter
from prima.services.webhooks.gowa import GowaAdapter
from prima.services.webhooks.waha import WahaAdapter

_ADAPTERS: dict[str, ProviderAdapter] = {
    "fonnte": FonnteAdapter(),
    "waha": WahaAdapter(),
    "gowa": GowaAdapter(),
}


def get_adapter(name: str) -> ProviderAdapter:
    adapter = _ADAPTERS.get(name)
    if not adapter:
        raise KeyError(f"Unknown webhook provider: {name}")
    return adapter


def provider_names() -> list[str]:
    return sorted(_ADAPTERS)
