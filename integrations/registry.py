"""
Adapter Registry

Maps a provider type to the adapter class that speaks its protocol. Adding a
provider means registering a class here; the sync orchestrator is unchanged.
"""

import logging
from typing import Callable

from pydantic import BaseModel, Field

from integrations.base import (
    PayrollAdapter,
    PayrollCredentials,
    PayrollProviderType,
    SupportedFeatures,
)
from integrations.exceptions import ConfigurationError

logger = logging.getLogger(__name__)


class ProviderInfo(BaseModel):
    """Catalog entry describing a payroll provider."""

    provider_type: PayrollProviderType
    name: str
    description: str
    required_fields: list[str]
    features: SupportedFeatures
    coming_soon: bool = False


PROVIDER_CATALOG: dict[PayrollProviderType, ProviderInfo] = {
    PayrollProviderType.NMBRS: ProviderInfo(
        provider_type=PayrollProviderType.NMBRS,
        name="Nmbrs",
        description="Dutch payroll administration software",
        required_fields=["api_token", "domain", "company_id"],
        features=SupportedFeatures(
            sync_employees=True, sync_hours=True, sync_leave=True, push_hours=True
        ),
    ),
    PayrollProviderType.AFAS: ProviderInfo(
        provider_type=PayrollProviderType.AFAS,
        name="AFAS Software",
        description="ERP and HR software for the Netherlands and Belgium",
        required_fields=["api_token", "environment"],
        features=SupportedFeatures(sync_employees=True, sync_leave=True),
        coming_soon=True,
    ),
    PayrollProviderType.LOKET: ProviderInfo(
        provider_type=PayrollProviderType.LOKET,
        name="Loket.nl",
        description="Online payroll administration",
        required_fields=["client_id", "client_secret"],
        features=SupportedFeatures(
            sync_employees=True, sync_hours=True, sync_leave=True, push_hours=True
        ),
        coming_soon=True,
    ),
    PayrollProviderType.EXACT: ProviderInfo(
        provider_type=PayrollProviderType.EXACT,
        name="Exact Online",
        description="Cloud business software",
        required_fields=["client_id", "client_secret"],
        features=SupportedFeatures(sync_employees=True, sync_hours=True, push_hours=True),
        coming_soon=True,
    ),
}


AdapterFactory = Callable[..., PayrollAdapter]


class AdapterRegistry:
    """Provider type -> adapter constructor."""

    def __init__(self):
        self._factories: dict[PayrollProviderType, AdapterFactory] = {}

    def register(self, provider_type: PayrollProviderType | str, factory: AdapterFactory | None = None):
        """
        Register an adapter constructor.

        Usable directly (``registry.register("nmbrs", NmbrsAdapter)``) or as a
        class decorator (``@registry.register("nmbrs")``).
        """
        key = resolve_provider_type(provider_type)

        def _register(f: AdapterFactory) -> AdapterFactory:
            if key in self._factories:
                logger.warning(f"Replacing adapter registered for {key.value}")
            self._factories[key] = f
            return f

        if factory is None:
            return _register
        return _register(factory)

    def is_registered(self, provider_type: PayrollProviderType | str) -> bool:
        try:
            return resolve_provider_type(provider_type) in self._factories
        except ConfigurationError:
            return False

    def providers(self) -> list[PayrollProviderType]:
        return list(self._factories)

    def adapter_class(self, provider_type: PayrollProviderType | str) -> AdapterFactory:
        key = resolve_provider_type(provider_type)
        factory = self._factories.get(key)
        if factory is None:
            raise ConfigurationError(
                f"Provider {key.value} is not available yet",
                code="provider_not_implemented",
            )
        return factory

    def required_credentials(self, provider_type: PayrollProviderType | str) -> tuple[str, ...]:
        factory = self.adapter_class(provider_type)
        return tuple(getattr(factory, "required_credentials", ()))

    def validate_credentials(
        self,
        provider_type: PayrollProviderType | str,
        credentials: PayrollCredentials,
    ) -> list[str]:
        """Return the required credential fields missing for a provider."""
        return credentials.missing_fields(self.required_credentials(provider_type))

    def create(
        self,
        provider_type: PayrollProviderType | str,
        credentials: PayrollCredentials,
        **options,
    ) -> PayrollAdapter:
        """Build an adapter from decrypted credentials."""
        return self.adapter_class(provider_type)(credentials, **options)


def resolve_provider_type(provider_type: PayrollProviderType | str) -> PayrollProviderType:
    try:
        return PayrollProviderType(provider_type)
    except ValueError as exc:
        raise ConfigurationError(
            f"Unknown provider: {provider_type}",
            code="unknown_provider",
        ) from exc


def default_registry() -> AdapterRegistry:
    """Registry with every implemented provider."""
    from integrations.payroll.nmbrs import NmbrsAdapter

    registry = AdapterRegistry()
    registry.register(PayrollProviderType.NMBRS, NmbrsAdapter)
    return registry
