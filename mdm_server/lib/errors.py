"""Exceptions raised while bootstrapping the MDM server."""


class BootstrapError(Exception):
    """Base exception for startup failures.

    Every subclass is fatal: the pipeline records the first one and
    skips the remaining steps.
    """


class CredentialError(BootstrapError):
    """Push credential could not be loaded."""


class InvalidPEMError(CredentialError):
    """File did not contain a usable PEM block."""

    def __init__(self, what: str):
        self.what = what
        super().__init__(f"invalid PEM data for {what}")


class UnsupportedKeyError(CredentialError):
    """Private key algorithm is not one the server can sign with."""

    def __init__(self, key_type: str):
        super().__init__(f"unsupported private key type: {key_type}")


class CredentialMismatchError(CredentialError):
    """Push certificate and private key are not a pair."""


class TopicNotFoundError(BootstrapError):
    """Push topic (UserID OID) missing from the certificate subject."""

    def __init__(self) -> None:
        super().__init__("could not find Push Topic (UserID OID) in certificate")


class ServerURLError(BootstrapError):
    """Public server URL is missing or malformed."""

    def __init__(self, url: str, reason: str):
        self.url = url
        super().__init__(f"invalid server URL {url!r}: {reason}")


class StorageError(BootstrapError):
    """Shared storage could not be opened or read."""


class MissingPrerequisiteError(BootstrapError):
    """A pipeline step ran before the step that populates its input."""

    def __init__(self, step: str, field: str):
        self.step = step
        self.field = field
        super().__init__(f"{step} requires {field}, which has not been set up")
