"""Data models for LDAP search results."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

__all__ = [
    "DirectoryAttribute",
    "DirectoryEntry",
    "ResponseControl",
]


@dataclass
class DirectoryAttribute:
    """One attribute of an LDAP entry and its values.

    Values are kept as the LDAP client returned them: `str` when the value
    could be decoded as UTF-8 and `bytes` for binary attributes or values
    that couldn't be decoded.
    """

    type: str
    """Name of the attribute type, as returned by the server."""

    values: list[str | bytes] = field(default_factory=list)
    """Values of the attribute, in the order returned by the server."""

    @property
    def buffers(self) -> list[bytes]:
        """Values of the attribute as raw bytes."""
        return [
            v if isinstance(v, bytes) else v.encode("utf-8")
            for v in self.values
        ]

    @property
    def strings(self) -> list[str]:
        """Values of the attribute decoded as UTF-8."""
        return [
            v.decode("utf-8", errors="replace") if isinstance(v, bytes) else v
            for v in self.values
        ]


@dataclass
class ResponseControl:
    """An LDAP control returned by the server along with an entry."""

    oid: str
    """OID identifying the type of the control."""

    criticality: bool = False
    """Whether the control was marked critical."""

    value: Any = None
    """Decoded value of the control, if any."""

    def to_json(self) -> dict[str, Any]:
        """Return the JSON-compatible representation of the control."""
        return {
            "controlType": self.oid,
            "criticality": self.criticality,
            "controlValue": self.value,
        }


@dataclass
class DirectoryEntry:
    """A single entry returned by an LDAP search."""

    dn: str
    """Distinguished name of the entry."""

    attributes: list[DirectoryAttribute] = field(default_factory=list)
    """Attributes of the entry, in the order returned by the server."""

    controls: list[ResponseControl] = field(default_factory=list)
    """Controls returned with the entry."""

    @classmethod
    def from_ldap(cls, entry: Mapping[str, Any]) -> DirectoryEntry:
        """Convert a search result from the LDAP client library.

        Parameters
        ----------
        entry
            A result of a bonsai search: a mapping from attribute names to
            lists of values that also holds the DN under the ``dn`` key.

        Returns
        -------
        DirectoryEntry
            The corresponding entry.
        """
        attributes = []
        for name, values in entry.items():
            if name.lower() == "dn":
                continue
            if isinstance(values, str | bytes):
                values = [values]
            converted = [_to_ldap_value(v) for v in values]
            attributes.append(DirectoryAttribute(type=name, values=converted))
        return cls(dn=str(entry["dn"]), attributes=attributes)


def _to_ldap_value(value: Any) -> str | bytes:
    """Undo the type conversion done by bonsai for non-raw attributes.

    bonsai returns the LDAP booleans ``TRUE`` and ``FALSE`` as `bool` and
    numeric values as `int`. Booleans are mapped back to their LDAP syntax.
    Integers become their decimal form, since the original text is lost.
    """
    if isinstance(value, bytes):
        return value
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    return str(value)
