"""
Custom exception hierarchy for shellconf.
"""

class ShellConfError(Exception):
    """Base exception for all shellconf errors."""
    pass

class NotFoundError(ShellConfError):
    pass

class ConfFileNotFoundError(NotFoundError):
    pass

class SectionNotFoundError(NotFoundError):
    pass

class KeyNotFoundError(NotFoundError):
    pass

class GroupNotFoundError(NotFoundError):
    pass

class ProfileNotFoundError(NotFoundError):
    pass

class SshConfNotFoundError(NotFoundError):
    pass

class AlreadyExistsError(ShellConfError):
    pass

class KeyExistsError(AlreadyExistsError):
    pass

class SectionExistsError(AlreadyExistsError):
    pass

class GroupExistsError(AlreadyExistsError):
    pass

class ProfileExistsError(AlreadyExistsError):
    pass

class SshConfExistsError(AlreadyExistsError):
    pass

class ValidationError(ShellConfError):
    pass

class InvalidNameError(ValidationError):
    pass

class EmptyValueError(ValidationError):
    pass

class CorruptValueError(ValidationError):
    """Raised when a stored value cannot be decoded."""
    pass

class ProtectedKeyError(ShellConfError):
    """Raised when a mutation targets a protected key."""
    def __init__(self, key: str):
        self.key = key
        super().__init__(f"'{key}' is a protected key and cannot be modified.")

class StorageError(ShellConfError):
    pass

class CryptoError(ShellConfError):
    pass

class KeyDerivationError(CryptoError):
    pass

class EncryptionError(CryptoError):
    pass

class DecryptionError(CryptoError):
    pass
