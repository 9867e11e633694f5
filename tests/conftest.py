"""Shared fixtures: generated certificates, CT leaf encoders and in-memory fakes."""

import base64
import datetime
import io
from typing import Dict, List, Optional

import pytest
from botocore.exceptions import ClientError
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID

from certwatch.client import decode_entry
from certwatch.errors import ArtifactWriteError, DecodeError, LogUnavailableError
from certwatch.models import DecodedEntry, LogSource, RawEntry

_KEY = ec.generate_private_key(ec.SECP256R1())


def make_cert_der(names: List[str], common_name: Optional[str] = None) -> bytes:
    """Self-signed certificate with the given SAN DNS names, DER encoded."""
    subject = x509.Name(
        [x509.NameAttribute(NameOID.COMMON_NAME, common_name or (names[0] if names else "test"))]
    )
    now = datetime.datetime.now(datetime.timezone.utc)
    builder = (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(subject)
        .public_key(_KEY.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now)
        .not_valid_after(now + datetime.timedelta(days=30))
    )
    if names:
        builder = builder.add_extension(
            x509.SubjectAlternativeName([x509.DNSName(n) for n in names]), critical=False
        )
    cert = builder.sign(_KEY, hashes.SHA256())
    return cert.public_bytes(serialization.Encoding.DER)


def make_duplicate_extension_cert_der(common_name: str = "dup.example.com") -> bytes:
    """
    Certificate carrying extension 1.2.3.4.5 twice.

    The builder refuses duplicates, so two distinct private extensions are
    encoded and the second OID is rewritten in the DER. The signature no
    longer verifies, which CT parsing never checks.
    """
    subject = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])
    now = datetime.datetime.now(datetime.timezone.utc)
    cert = (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(subject)
        .public_key(_KEY.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now)
        .not_valid_after(now + datetime.timedelta(days=30))
        .add_extension(
            x509.UnrecognizedExtension(x509.ObjectIdentifier("1.2.3.4.5"), b"\x05\x00"),
            critical=False,
        )
        .add_extension(
            x509.UnrecognizedExtension(x509.ObjectIdentifier("1.2.3.4.6"), b"\x05\x00"),
            critical=False,
        )
        .sign(_KEY, hashes.SHA256())
    )
    der = cert.public_bytes(serialization.Encoding.DER)
    # OBJECT IDENTIFIER 1.2.3.4.6 -> 1.2.3.4.5
    patched = der.replace(bytes.fromhex("06042a030406"), bytes.fromhex("06042a030405"))
    assert patched != der
    return patched


def _vec(data: bytes, length_bytes: int) -> bytes:
    return len(data).to_bytes(length_bytes, "big") + data


def _b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def x509_payload(der: bytes, timestamp: int = 1_700_000_000_000) -> Dict[str, str]:
    """get-entries item for an X509 entry."""
    leaf = (
        b"\x00\x00"
        + timestamp.to_bytes(8, "big")
        + (0).to_bytes(2, "big")
        + _vec(der, 3)
        + _vec(b"", 2)
    )
    return {"leaf_input": _b64(leaf), "extra_data": _b64(_vec(b"", 3))}


def precert_payload(der: bytes, timestamp: int = 1_700_000_000_000) -> Dict[str, str]:
    """get-entries item for a precert entry; the precertificate travels in extra_data."""
    leaf = (
        b"\x00\x00"
        + timestamp.to_bytes(8, "big")
        + (1).to_bytes(2, "big")
        + b"\x11" * 32
        + _vec(b"tbs", 3)
        + _vec(b"", 2)
    )
    return {"leaf_input": _b64(leaf), "extra_data": _b64(_vec(der, 3) + _vec(b"", 3))}


def garbage_payload() -> Dict[str, str]:
    """Entry whose leaf has a bad version byte."""
    return {"leaf_input": _b64(b"\x07\x00" + b"\x00" * 10), "extra_data": ""}


class FakeLogClient:
    """Log client over an in-memory list of get-entries payloads."""

    def __init__(
        self,
        source: LogSource,
        payloads: Optional[List[Dict[str, str]]] = None,
        size: Optional[int] = None,
        size_error: bool = False,
        fetch_error: bool = False,
        decode_errors: Optional[Dict[int, bool]] = None,
    ):
        self.source = source
        self.payloads = payloads or []
        self.size = len(self.payloads) if size is None else size
        self.size_error = size_error
        self.fetch_error = fetch_error
        self.decode_errors = decode_errors or {}
        self.size_calls = 0
        self.fetch_calls: List[tuple] = []
        self.decoded: List[int] = []

    async def current_size(self) -> int:
        self.size_calls += 1
        if self.size_error:
            raise LogUnavailableError(self.source.url, "connection refused")
        return self.size

    async def fetch_range(self, start: int, end: int) -> List[RawEntry]:
        self.fetch_calls.append((start, end))
        if self.fetch_error:
            raise LogUnavailableError(self.source.url, "503 Service Unavailable")
        return [RawEntry(index=i, payload=self.payloads[i]) for i in range(start, end)]

    def decode(self, raw: RawEntry) -> DecodedEntry:
        self.decoded.append(raw.index)
        if raw.index in self.decode_errors:
            raise DecodeError(raw.index, "broken", fatal=self.decode_errors[raw.index])
        return decode_entry(raw)


class MemorySink:
    """Artifact sink keeping payloads in a dict."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.artifacts: Dict[str, bytes] = {}

    async def store(self, key: str, payload: bytes) -> None:
        if self.fail:
            raise ArtifactWriteError(f"put artifact {key}: bucket gone")
        self.artifacts[key] = payload


def s3_client_error(code: str, status: int, operation: str) -> ClientError:
    return ClientError(
        {"Error": {"Code": code, "Message": code}, "ResponseMetadata": {"HTTPStatusCode": status}},
        operation,
    )


class FakeS3Client:
    """Just enough of the boto3 S3 client: get_object and put_object on one bucket."""

    def __init__(self, objects=None, get_error=None, put_error=None):
        self.objects: Dict[str, bytes] = dict(objects or {})
        self.get_error = get_error
        self.put_error = put_error
        self.calls: List[tuple] = []

    def get_object(self, Bucket, Key):
        self.calls.append(("get", Bucket, Key))
        if self.get_error:
            raise self.get_error
        if Key not in self.objects:
            raise s3_client_error("NoSuchKey", 404, "GetObject")
        return {"Body": io.BytesIO(self.objects[Key])}

    def put_object(self, Bucket, Key, Body):
        self.calls.append(("put", Bucket, Key))
        if self.put_error:
            raise self.put_error
        self.objects[Key] = Body
        return {}


class StaticCatalog:
    def __init__(self, sources: List[LogSource], error: Optional[Exception] = None):
        self.sources = sources
        self.error = error

    async def fetch_catalog(self) -> List[LogSource]:
        if self.error:
            raise self.error
        return list(self.sources)


@pytest.fixture
def source() -> LogSource:
    return LogSource(
        url="https://ct.example.net/logs/argon/",
        operator="Example Operator",
        description="Example Argon log",
    )


@pytest.fixture
def plain_payload() -> Dict[str, str]:
    return x509_payload(make_cert_der(["unrelated.org"]))
