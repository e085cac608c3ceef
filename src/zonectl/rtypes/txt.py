"""TXT records.

Values are kept unquoted in memory. ``txt`` holds the value split into
chunks of at most 255 octets; quoting happens only when a provider or the
zone-file renderer asks for the presentation form.
"""

from __future__ import annotations

from typing import Any, Mapping, Sequence

from ..models import RecordConfig
from ..normalize import TXT_CHUNK_MAX, txt_join, txt_quote, txt_split, txt_unquote
from ..registry import ArgKind, RType, register


class TxtRType(RType):
    """TXT records; the single argument is a string or a list of strings."""

    name = "TXT"
    signature = (ArgKind.STRINGS,)

    def from_raw(self, rc: RecordConfig, origin: str, args: Sequence[Any], meta: Mapping[str, str]) -> None:
        """Store the joined value re-split into wire-size chunks."""
        rc.set_txt(txt_split(txt_join(args[0])))

    def text_to_args(self, text: str) -> list[Any]:
        """Return the quoted strings of the rdata as one argument."""
        return [txt_unquote(text)]

    def to_args(self, rc: RecordConfig) -> list[Any]:
        """Return the logical (joined) value."""
        return [rc.target]

    def to_text(self, rc: RecordConfig) -> str:
        """Return the chunks in quoted presentation form."""
        return txt_quote(rc.txt or [rc.target])

    def comparable(self, rc: RecordConfig) -> str:
        """Compare by logical value so chunking differences never show as changes."""
        return txt_quote([rc.target])

    def display(self, rc: RecordConfig) -> str:
        """Show the quoted chunks."""
        return self.to_text(rc)

    def audit(self, rc: RecordConfig) -> list[str]:
        """Flag oversized chunks and suspicious characters."""
        warnings: list[str] = []
        for index, chunk in enumerate(rc.txt):
            size = len(chunk.encode("utf-8"))
            if size > TXT_CHUNK_MAX:
                warnings.append(f"TXT chunk {index} is {size} octets (max {TXT_CHUNK_MAX})")
        if txt_join(rc.txt) != rc.target:
            warnings.append("TXT chunks do not match the record value")
        if not rc.target:
            warnings.append("TXT record is empty")
        return warnings


TXT = register(TxtRType())
