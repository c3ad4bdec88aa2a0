from orders_gateway.config import Settings
from orders_gateway.errors import ConfigurationError

from .providers import Auth0Provider, IdentityProvider, LocalProvider

_provider_map = {
    "auth0": Auth0Provider,
    "local": LocalProvider,
    # "keycloak": KeycloakProvider, etc…
}


def get_provider(settings: Settings) -> IdentityProvider:
    provider_cls = _provider_map.get(settings.auth_provider)
    if provider_cls is None:
        raise ConfigurationError(
            f"Unknown AUTH_PROVIDER '{settings.auth_provider}'",
            details={"choices": sorted(_provider_map)},
        )
    return provider_cls(settings)
