"""PEM certificate loading into an in-memory, ephemeral TLS identity.

Nothing derived from the private key is written to disk. The buffers this
module owns are ``bytearray`` copies that are zero-filled before release.
The immutable ``bytes`` returned by ``cryptography`` (the PEM from
``private_bytes`` and the PKCS#12 blob from
``serialize_key_and_certificates``), along with the library's own internal
copies, cannot be wiped from Python and are only dropped for collection.
"""

import contextlib
import datetime
import os
import ssl
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, Union

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.serialization import pkcs12

PathLike = Union[str, Path]

_MEMFD_NAME = "frontdoor-tls-identity"


class CertificateLoadError(Exception):
    """Raised when a PEM certificate/key pair cannot become a TLS identity."""


class CertificateNotFound(CertificateLoadError):
    """Raised when the certificate or key file is missing or unreadable."""


class CertificateKeyMismatch(CertificateLoadError):
    """Raised when the private key does not belong to the leaf certificate."""


class InvalidCertificate(CertificateLoadError):
    """Raised when PEM data is malformed, encrypted or of an unsupported type."""


def zero_fill(buffer: bytearray) -> None:
    """Overwrite a mutable buffer with zeros in place."""
    buffer[:] = bytes(len(buffer))


@contextlib.contextmanager
def transient_buffer(data: Union[bytes, bytearray]) -> Iterator[bytearray]:
    """Yield a mutable copy of ``data`` that is zero-filled on exit, even on error."""
    buffer = bytearray(data)
    try:
        yield buffer
    finally:
        zero_fill(buffer)


def _read_secret(path: PathLike) -> bytearray:
    """Read a file straight into a bytearray so the caller can wipe it."""
    try:
        with open(path, "rb") as file_handle:
            size = os.fstat(file_handle.fileno()).st_size
            buffer = bytearray(size)
            read = file_handle.readinto(buffer)
    except OSError as exc:
        raise CertificateNotFound(f"Cannot read {Path(path).name}") from exc
    del buffer[read:]
    return buffer


def _public_bytes(public_key) -> bytes:
    return public_key.public_bytes(
        serialization.Encoding.DER,
        serialization.PublicFormat.SubjectPublicKeyInfo,
    )


@dataclass(frozen=True)
class CertificateMaterial:
    """An in-memory TLS identity: leaf certificate, chain and private key."""

    certificate: x509.Certificate
    private_key: object
    chain: tuple[x509.Certificate, ...] = ()

    @property
    def not_after(self) -> datetime.datetime:
        """Expiry of the leaf certificate as an aware UTC datetime."""
        return self.certificate.not_valid_after_utc

    @property
    def subject(self) -> str:
        """RFC 4514 subject of the leaf certificate."""
        return self.certificate.subject.rfc4514_string()

    @property
    def fingerprint_sha256(self) -> str:
        """Hex SHA-256 fingerprint of the leaf certificate."""
        return self.certificate.fingerprint(hashes.SHA256()).hex()

    def days_remaining(self, now: datetime.datetime) -> int:
        """Whole days until expiry, floored at zero."""
        seconds = (self.not_after - now).total_seconds()
        return max(0, int(seconds // 86400))

    def is_expired(self, now: datetime.datetime) -> bool:
        """Return True once ``now`` has reached the certificate's notAfter."""
        return self.not_after <= now

    def install_into(self, context: ssl.SSLContext) -> None:
        """Load this identity into ``context`` through an anonymous memory file."""
        if not hasattr(os, "memfd_create"):
            raise CertificateLoadError(
                "In-memory key loading needs memfd_create, which this platform lacks"
            )
        key_pem = self.private_key.private_bytes(  # type: ignore[attr-defined]
            serialization.Encoding.PEM,
            serialization.PrivateFormat.PKCS8,
            serialization.NoEncryption(),
        )
        chain_pem = b"".join(
            cert.public_bytes(serialization.Encoding.PEM)
            for cert in (self.certificate, *self.chain)
        )
        with transient_buffer(key_pem) as identity:
            del key_pem
            identity.extend(chain_pem)
            fd = os.memfd_create(_MEMFD_NAME, os.MFD_CLOEXEC)
            try:
                os.write(fd, identity)
                try:
                    context.load_cert_chain(f"/proc/self/fd/{fd}")
                except ssl.SSLError as exc:
                    raise InvalidCertificate("OpenSSL rejected the identity") from exc
                finally:
                    os.ftruncate(fd, 0)
            finally:
                os.close(fd)


def load_certificate(cert_path: PathLike, key_path: PathLike) -> CertificateMaterial:
    """Turn a PEM certificate+key pair into an ephemeral in-memory identity.

    The pair is packed into a PKCS#12 container and immediately re-imported,
    which forces the key to be validated. The ``bytearray`` copy of the
    container is zeroed before this function returns or raises; the
    immutable ``bytes`` it was copied from is only released.
    """
    if not cert_path or not key_path:
        raise CertificateNotFound("Certificate and key paths are required")

    cert_pem = _read_secret(cert_path)
    key_pem = _read_secret(key_path)
    try:
        try:
            certificates = x509.load_pem_x509_certificates(bytes(cert_pem))
        except ValueError as exc:
            raise InvalidCertificate("Certificate file is not valid PEM") from exc
        try:
            private_key = serialization.load_pem_private_key(key_pem, password=None)
        except (TypeError, ValueError) as exc:
            raise InvalidCertificate("Key file is not an unencrypted PEM key") from exc
    finally:
        zero_fill(key_pem)

    leaf, chain = certificates[0], tuple(certificates[1:])
    if _public_bytes(leaf.public_key()) != _public_bytes(private_key.public_key()):
        raise CertificateKeyMismatch("Private key does not match the certificate")

    try:
        packed = pkcs12.serialize_key_and_certificates(
            name=None,
            key=private_key,
            cert=leaf,
            cas=list(chain) or None,
            encryption_algorithm=serialization.NoEncryption(),
        )
    except (TypeError, ValueError) as exc:
        raise InvalidCertificate("Key type cannot be packed into PKCS#12") from exc

    with transient_buffer(packed) as container:
        del packed
        try:
            bundle = pkcs12.load_pkcs12(container, None)
        except ValueError as exc:
            raise InvalidCertificate("PKCS#12 re-import failed") from exc

    if bundle.cert is None or bundle.key is None:
        raise InvalidCertificate("PKCS#12 re-import lost the certificate or key")
    return CertificateMaterial(
        certificate=bundle.cert.certificate,
        private_key=bundle.key,
        chain=tuple(item.certificate for item in bundle.additional_certs),
    )
