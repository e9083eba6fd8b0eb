# importer/errors.py
import logging
from enum import Enum


class ImportErrorKind(str, Enum):
    UNSUPPORTED_PROVIDER = "unsupported_provider"
    BLOCKED = "blocked"
    NETWORK = "network"
    INSUFFICIENT_DATA = "insufficient_data"
    DUPLICATE = "duplicate"
    STORAGE = "storage"
    UNEXPECTED = "unexpected"


# One user-facing message per kind. Technical detail stays in the server log.
USER_MESSAGES = {
    ImportErrorKind.UNSUPPORTED_PROVIDER: "Ustøttet leverandør. Støttede: {supported}",
    ImportErrorKind.BLOCKED: "Leverandøren blokkerte forespørselen (captcha/verifisering). Prøv igjen senere eller bruk en annen URL.",
    ImportErrorKind.NETWORK: "Kunne ikke hente produktdata. Sjekk at URL-en er korrekt og at produktet eksisterer.",
    ImportErrorKind.INSUFFICIENT_DATA: "Kunne ikke hente nok produktdata fra siden.",
    ImportErrorKind.DUPLICATE: "Produktet eksisterer allerede: {name}",
    ImportErrorKind.STORAGE: "Kunne ikke lagre produktet i databasen. Prøv igjen senere.",
    ImportErrorKind.UNEXPECTED: "En uventet feil oppstod under import. Prøv igjen senere.",
}

LOG_LEVELS = {
    ImportErrorKind.UNSUPPORTED_PROVIDER: logging.INFO,
    ImportErrorKind.BLOCKED: logging.WARNING,
    ImportErrorKind.NETWORK: logging.WARNING,
    ImportErrorKind.INSUFFICIENT_DATA: logging.WARNING,
    ImportErrorKind.DUPLICATE: logging.INFO,
    ImportErrorKind.STORAGE: logging.ERROR,
    ImportErrorKind.UNEXPECTED: logging.ERROR,
}


def user_message(kind, **params):
    """Return the Norwegian user-facing message for an error kind."""
    return USER_MESSAGES[kind].format(**params)


class ImportFailure(Exception):
    """Base class for failures raised inside the import pipeline."""

    kind = ImportErrorKind.UNEXPECTED


class BlockedError(ImportFailure):
    """The marketplace answered with an anti-bot / captcha page."""

    kind = ImportErrorKind.BLOCKED


class FetchError(ImportFailure):
    """Transport failure, exhausted retries or a 4xx response."""

    kind = ImportErrorKind.NETWORK


class InsufficientDataError(ImportFailure):
    """No extraction strategy produced a minimally viable record."""

    kind = ImportErrorKind.INSUFFICIENT_DATA


class DuplicateProductError(ImportFailure):
    """A product with the same supplier URL already exists."""

    kind = ImportErrorKind.DUPLICATE


class StorageError(ImportFailure):
    kind = ImportErrorKind.STORAGE
