# booklink/api/dependencies/booking.py
from booklink.db.session import AsyncSessionLocal
from booklink.services.busy_aggregator import ProviderFactory
from booklink.services.calendar_provider import get_calendar_provider
from booklink.services.credential_store import CredentialStore, DatabaseCredentialStore


def get_credential_store() -> CredentialStore:
    """
    Credential store handed to the calendar adapters.

    It opens its own short sessions so a token refresh is committed
    independently of the request's unit of work.
    """
    return DatabaseCredentialStore(AsyncSessionLocal)


def get_provider_factory() -> ProviderFactory:
    return get_calendar_provider
