"""Client for classic (RFC 6962) CT logs and the leaf decoder."""

import base64
import binascii
import logging
from typing import Any, Dict, List, Optional, cast

import httpx
from cryptography import x509
from cryptography.x509.oid import NameOID

from . import __version__
from .binary_reader import BinaryReader, DataType, Endianness
from .errors import DecodeError, LogUnavailableError
from .models import DecodedEntry, EntryType, LogSource, RawEntry

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = f"certwatch/{__version__}"


def certificate_names(cert: x509.Certificate) -> List[str]:
    """
    DNS names a certificate is valid for, in certificate order.

    Subject alternative names win; the subject CN is only used when the
    certificate carries no SAN DNS names at all.
    """
    names: List[str] = []
    try:
        san_ext = cert.extensions.get_extension_for_class(x509.SubjectAlternativeName)
        names.extend(san_ext.value.get_values_for_type(x509.DNSName))
    except x509.ExtensionNotFound:
        pass
    except (ValueError, x509.DuplicateExtension, x509.UnsupportedGeneralNameType) as e:
        logger.debug(f"Unparseable certificate extensions: {e}")

    if names:
        return list(dict.fromkeys(names))

    try:
        cn_attr = cert.subject.get_attributes_for_oid(NameOID.COMMON_NAME)
    except ValueError:
        return []
    if cn_attr:
        cn_value = cn_attr[0].value
        if isinstance(cn_value, bytes):
            cn_value = cn_value.decode("utf-8", errors="ignore")
        return [str(cn_value)]
    return []


def _b64(raw: RawEntry, field: str) -> bytes:
    value = raw.payload.get(field)
    if value is None:
        return b""
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError, TypeError) as e:
        raise DecodeError(raw.index, f"{field} is not valid base64: {e}", fatal=True) from e


def _load_certificate(index: int, der: bytes, what: str) -> x509.Certificate:
    try:
        return x509.load_der_x509_certificate(der)
    except ValueError as e:
        raise DecodeError(index, f"unparseable {what}: {e}") from e


def decode_entry(raw: RawEntry) -> DecodedEntry:
    """
    Decode a get-entries item into a DecodedEntry.

    MerkleTreeLeaf layout: version(1) leaf_type(1) timestamp(8) entry_type(2),
    then for X509 entries the certificate as a 3-byte length vector, and for
    precert entries issuer_key_hash(32) + TBSCertificate vector. The
    precertificate itself travels in extra_data.

    Raises:
        DecodeError: fatal if the leaf structure is broken, non-fatal if only
            the certificate inside it can't be used
    """
    leaf_input = _b64(raw, "leaf_input")
    reader = BinaryReader(leaf_input, Endianness.BIG)

    try:
        version = reader.read(DataType.UINT, 1)
        if version != 0:
            raise DecodeError(raw.index, f"invalid MerkleTreeLeaf version: {version}", fatal=True)

        leaf_type = reader.read(DataType.UINT, 1)
        if leaf_type != 0:
            raise DecodeError(raw.index, f"invalid leaf_type: {leaf_type}", fatal=True)

        timestamp = reader.read(DataType.UINT, 8)
        entry_type_val = reader.read(DataType.UINT, 2)

        if entry_type_val == EntryType.X509_ENTRY:
            cert_data = reader.read_vector(3)
        elif entry_type_val == EntryType.PRECERT_ENTRY:
            reader.skip(32)  # issuer_key_hash
            reader.read_vector(3)  # TBSCertificate, superseded by extra_data
        else:
            raise DecodeError(raw.index, f"unknown entry type: {entry_type_val}")
    except ValueError as e:
        raise DecodeError(raw.index, f"truncated leaf_input: {e}", fatal=True) from e

    if entry_type_val == EntryType.X509_ENTRY:
        return DecodedEntry(
            index=raw.index,
            timestamp=timestamp,
            entry_type=EntryType.X509_ENTRY,
            certificate=_load_certificate(raw.index, cert_data, "certificate"),
        )

    extra_data = _b64(raw, "extra_data")
    if not extra_data:
        raise DecodeError(raw.index, "precert entry without extra_data")
    try:
        precert_data = BinaryReader(extra_data, Endianness.BIG).read_vector(3)
    except ValueError as e:
        raise DecodeError(raw.index, f"truncated extra_data: {e}") from e

    return DecodedEntry(
        index=raw.index,
        timestamp=timestamp,
        entry_type=EntryType.PRECERT_ENTRY,
        precertificate=_load_certificate(raw.index, precert_data, "precertificate"),
    )


class ClassicLogClient:
    """Client for interacting with classic CT logs"""

    def __init__(
        self,
        source: LogSource,
        http: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
        user_agent: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.source = source
        self.base_url = source.url.rstrip("/")
        self._owns_client = http is None
        self._client = http or httpx.AsyncClient(
            timeout=timeout,
            headers={"User-Agent": user_agent or DEFAULT_USER_AGENT},
            transport=transport,
        )

    async def __aenter__(self):
        """Async context manager entry"""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit"""
        await self.close()

    async def close(self):
        """Close the HTTP client if this instance created it"""
        if self._owns_client:
            await self._client.aclose()

    async def _get_json(self, path: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        try:
            response = await self._client.get(f"{self.base_url}{path}", params=params)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPError as e:
            # Strip verbose httpx error info
            raise LogUnavailableError(self.source.url, str(e).split("\n")[0]) from e
        except ValueError as e:
            raise LogUnavailableError(self.source.url, f"invalid JSON from {path}: {e}") from e

        if not isinstance(data, dict):
            raise LogUnavailableError(self.source.url, f"unexpected response from {path}")
        return cast(Dict[str, Any], data)

    async def current_size(self) -> int:
        """
        Fetch the current tree size from the Signed Tree Head.

        Raises:
            LogUnavailableError: if the log can't be reached or answers garbage
        """
        sth = await self._get_json("/ct/v1/get-sth")
        try:
            tree_size = int(sth["tree_size"])
        except (KeyError, TypeError, ValueError) as e:
            raise LogUnavailableError(self.source.url, f"bad STH: {e}") from e
        if tree_size < 0:
            raise LogUnavailableError(self.source.url, f"negative tree_size {tree_size}")
        return tree_size

    async def fetch_range(self, start: int, end: int) -> List[RawEntry]:
        """
        Fetch entries with index in [start, end).

        Logs cap how many entries a single get-entries call returns, so short
        pages are followed up until the range is complete.

        Raises:
            LogUnavailableError: on transport errors or if the log stops
                returning entries before the range is filled
        """
        entries: List[RawEntry] = []
        current = start

        while current < end:
            data = await self._get_json(
                "/ct/v1/get-entries", params={"start": current, "end": end - 1}
            )
            page = data.get("entries")
            if not isinstance(page, list) or not page:
                raise LogUnavailableError(
                    self.source.url, f"no entries returned for [{current}, {end})"
                )

            for item in page[: end - current]:
                if not isinstance(item, dict):
                    raise LogUnavailableError(self.source.url, f"malformed entry at {current}")
                entries.append(RawEntry(index=current, payload=item))
                current += 1

        return entries

    def decode(self, raw: RawEntry) -> DecodedEntry:
        return decode_entry(raw)
