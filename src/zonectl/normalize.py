"""Name, TXT and address normalisation helpers."""

from __future__ import annotations

import ipaddress
from typing import Iterable, List

import dns.exception
import dns.name
import dns.tokenizer

TXT_CHUNK_MAX = 255


def label_to_fqdn(label: str, origin: str) -> str:
    """Return the FQDN (no trailing dot) for a short label."""
    origin = origin.rstrip(".").lower()
    label = label.strip().lower()
    if label in {"", "@"}:
        return origin
    return f"{label}.{origin}"


def fqdn_to_label(fqdn: str, origin: str) -> str:
    """Return the short label for a FQDN inside origin ("@" for the apex)."""
    fqdn = fqdn.rstrip(".").lower()
    origin = origin.rstrip(".").lower()
    if fqdn == origin:
        return "@"
    suffix = "." + origin
    if fqdn.endswith(suffix):
        return fqdn[: -len(suffix)]
    return fqdn


def target_to_fqdn(target: str, origin: str) -> str:
    """Return a hostname target as an absolute name ending in a dot."""
    cleaned = target.strip()
    origin = origin.rstrip(".").lower()
    if cleaned in {"", "@"}:
        return f"{origin}."
    if cleaned == ".":
        return "."
    if cleaned.endswith("."):
        return cleaned.lower()
    return f"{cleaned.lower()}.{origin}."


def is_in_zone(fqdn: str, origin: str) -> bool:
    """Return True if fqdn is the origin or a name below it."""
    fqdn = fqdn.rstrip(".").lower()
    origin = origin.rstrip(".").lower()
    return fqdn == origin or fqdn.endswith("." + origin)


def to_ascii(name: str) -> str:
    """Return the IDNA (punycode) form of a name, preserving a trailing dot."""
    if name.isascii():
        return name.lower()
    absolute = name.endswith(".")
    encoded = dns.name.from_unicode(name.rstrip("."), origin=None).to_text(omit_final_dot=True)
    return f"{encoded}." if absolute else encoded


def txt_split(text: str, limit: int = TXT_CHUNK_MAX) -> List[str]:
    """Split text into chunks of at most ``limit`` octets.

    Multi-byte characters are never split across chunks.
    """
    if not text:
        return [""]
    chunks: List[str] = []
    current: List[str] = []
    size = 0
    for char in text:
        width = len(char.encode("utf-8"))
        if size + width > limit:
            chunks.append("".join(current))
            current = []
            size = 0
        current.append(char)
        size += width
    chunks.append("".join(current))
    return chunks


def txt_join(chunks: Iterable[str]) -> str:
    """Return the logical TXT value of a chunk list."""
    return "".join(chunks)


def _quote(chunk: str) -> str:
    """Quote one TXT chunk."""
    escaped = chunk.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def txt_quote(chunks: Iterable[str], separator: str = " ") -> str:
    """Return chunks in quoted presentation form."""
    return separator.join(_quote(chunk) for chunk in chunks)


def txt_to_wire(chunks: Iterable[str]) -> str:
    """Return the concatenated quoted form used by providers (``"a""b"``)."""
    return txt_quote(chunks, separator="")


def txt_unquote(text: str) -> List[str]:
    """Parse quoted TXT presentation text back into chunks.

    Unquoted input is treated as a single chunk.
    """
    stripped = text.strip()
    if not stripped.startswith('"'):
        return [stripped]
    return tokenize_rfc1035(stripped)


def parse_ip(text: str, version: int | None = None) -> ipaddress.IPv4Address | ipaddress.IPv6Address:
    """Parse an IP address, optionally requiring a version."""
    try:
        address = ipaddress.ip_address(text.strip())
    except ValueError as exc:
        raise ValueError(f"invalid IP address {text!r}") from exc
    if version is not None and address.version != version:
        raise ValueError(f"{text!r} is not an IPv{version} address")
    return address


def tokenize_rfc1035(line: str) -> List[str]:
    """Split one zone-file style line into fields using dnspython's tokenizer.

    A double-quoted run is a single field with its quotes removed. Adjacent
    quoted runs such as ``"a""b"`` are separate fields. Escapes (``\\"``,
    ``\\\\`` and ``\\DDD`` octets) are decoded as UTF-8.
    """
    if "\n" in line.rstrip("\n"):
        raise ValueError("expected exactly one record per line")
    tokenizer = dns.tokenizer.Tokenizer(line.rstrip("\n"))
    fields: List[str] = []
    try:
        while True:
            token = tokenizer.get()
            if token.is_eol_or_eof():
                break
            raw = token.unescape_to_bytes().value
            fields.append(raw.decode("utf-8", errors="replace"))
    except dns.exception.DNSException as exc:
        raise ValueError(f"cannot tokenize {line!r}: {exc}") from exc
    return fields
