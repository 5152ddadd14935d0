import base64
import hashlib


def sha1_digest(data: bytes | bytearray | memoryview) -> str:
    return base64.b64encode(hashlib.sha1(data).digest()).decode("ascii")


def digest_header(value: str) -> str:
    return f"SHA={value}"


class FileDigest:
    """Whole-payload SHA1, fed part by part in payload order."""

    def __init__(self) -> None:
        self._hash = hashlib.sha1()
        self.bytes_hashed = 0

    def update(self, data: bytes | bytearray | memoryview) -> None:
        self._hash.update(data)
        self.bytes_hashed += len(data)

    def value(self) -> str:
        return base64.b64encode(self._hash.digest()).decode("ascii")
