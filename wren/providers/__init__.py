from .turnkey import ApiKeyStamper, IdentityProviderError, SubOrganization, TurnkeyClient

__all__ = ["ApiKeyStamper", "IdentityProviderError", "SubOrganization", "TurnkeyClient"]
