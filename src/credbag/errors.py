"""Exception hierarchy shared by every credbag layer."""


class CredbagError(Exception):
    """Base exception for credbag operations."""


class ConfigError(CredbagError):
    """Configuration file is unreadable or holds invalid values."""


class UnknownTypeError(CredbagError):
    """A profile type tag does not name a registered variant."""


class StorageError(CredbagError):
    """Base exception for bag I/O faults."""


class NotFoundError(StorageError):
    """No bag entry exists with the requested name and type."""


class KeyFileError(CredbagError):
    """The public key file is missing or does not hold an RSA public key."""


class AuthenticationError(CredbagError):
    """The private key could not be unlocked (wrong passphrase or bad key file)."""


class DecryptionError(CredbagError):
    """Ciphertext is malformed, tampered with, or was made for another key pair."""


class ProfileFormatError(CredbagError):
    """Decrypted plaintext does not deserialize into its profile variant."""


class MountError(CredbagError):
    """The ephemeral mount could not be set up or torn down."""


class IssuerError(CredbagError):
    """A call to the credential issuing authority failed."""


class RotationPersistError(CredbagError):
    """Credentials were rotated at the issuer but the bag was not updated.

    The stored entry is stale relative to the issuing authority and the new
    material may be lost; an operator has to reconcile it by hand.
    """

    def __init__(self, name: str, cause: Exception):
        super().__init__(
            f"credentials for '{name}' were rotated at the issuer but the bag "
            f"could not be updated ({cause}); the stored entry is stale"
        )
        self.name = name
        self.cause = cause
