"""Exceptions raised by amber.

Every error aborts the current command. Where a secret name or document
field is involved it is kept on the exception so callers can report it.
"""

from typing import Optional


class SecretsError(Exception):
    """Base exception for secrets errors."""
    pass


class SecretsNotFoundError(SecretsError):
    """Secrets file not found."""
    pass


class UnsupportedFormatVersionError(SecretsError):
    """The document declares a file format version we do not understand."""

    def __init__(self, version, supported):
        self.version = version
        self.supported = supported
        super().__init__(
            f"Unsupported file format detected. Detected format is {version!r}, "
            f"we only support {supported}."
        )


class MalformedDocumentError(SecretsError):
    """The document is not valid YAML or does not have the expected shape."""

    def __init__(self, message: str, field: Optional[str] = None):
        self.field = field
        if field:
            message = f"{field}: {message}"
        super().__init__(message)


class InvalidKeyEncodingError(SecretsError):
    """A key is not a 32 byte hex string."""

    def __init__(self, what: str = "key"):
        self.what = what
        super().__init__(f"Invalid {what}: expected 64 hexadecimal characters")


class InvalidCiphertextEncodingError(SecretsError):
    """A stored ciphertext is not valid hex."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Non-hex ciphertext for secret {name}")


class DuplicateSecretNameError(SecretsError):
    """Two records share the same name."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Duplicated secret name: {name}")


class SecretNotFoundError(SecretsError):
    """Secret name not present in the document."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Secret not found: {name}")


class InvalidSecretNameError(SecretsError):
    """Secret names are upper case ASCII, digits and underscores."""

    def __init__(self, name: str):
        self.name = name
        if not name:
            message = "Cannot provide an empty secret name"
        else:
            message = (
                f"Invalid secret name {name!r}: must be exclusively upper case ASCII, "
                "digits, and underscores"
            )
        super().__init__(message)


class DecryptionFailedError(SecretsError):
    """A ciphertext could not be decrypted or did not match its hash."""

    def __init__(self, reason: str, name: Optional[str] = None):
        self.name = name
        self.reason = reason
        if name is None:
            message = reason
        else:
            message = f"Error while decrypting secret named {name}: {reason}"
        super().__init__(message)


class MissingSecretKeyError(SecretsError):
    """The secret key environment variable is not set."""

    def __init__(self, variable: str):
        self.variable = variable
        super().__init__(
            f"Secret key not provided: set the {variable} environment variable"
        )


class KeyMismatchError(SecretsError):
    """The supplied secret key does not belong to the document's public key."""

    def __init__(self, variable: str):
        self.variable = variable
        super().__init__(
            f"Secret key from {variable} does not match the secrets file's public key"
        )


class OutputForwardingError(SecretsError):
    """The child's output could not be written to our own stdout or stderr."""

    def __init__(self, stream: str, error: BaseException):
        self.stream = stream
        self.error = error
        super().__init__(f"Unable to forward {stream} of child process: {error}")
