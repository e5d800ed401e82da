class CapsuleError(Exception):
    """Base class for pipeline failures surfaced to the notification channel.

    ``kind`` and ``code`` identify the failure on the wire; codes follow the
    numbering used by the desktop client.
    """

    kind = "error"
    code = 0


class FileAccessError(CapsuleError):
    """Source unreadable, mid-stream read failure, or output not writable."""

    kind = "file_error"
    code = -1


class CompressionError(CapsuleError):
    kind = "compress_failed"
    code = -2


class CipherError(CapsuleError):
    kind = "aes_failed"
    code = -3


class IntegrityError(CapsuleError):
    """Recovered plaintext does not match the stored digest."""

    kind = "checksum_failed"
    code = -4


# -5 is the client's INVALID_EXT_TYPE; sniffing misses are not errors here.
class TempStorageError(CapsuleError):
    kind = "temp_storage"
    code = -6
