"""Decoding of LDAP search results into profile dictionaries."""

from __future__ import annotations

import uuid
from collections.abc import Callable
from typing import Any

from .constants import GUID_ATTRIBUTE, PHOTO_ATTRIBUTE
from .models.ldap import DirectoryAttribute, DirectoryEntry

type AttributeDecoder = Callable[[DirectoryAttribute], list[Any]]
"""Turns the values of an attribute into the list of decoded values."""

__all__ = [
    "ATTRIBUTE_DECODERS",
    "AttributeDecoder",
    "decode_bytes",
    "decode_entry",
    "decode_guid",
    "decode_strings",
    "format_guid",
]


def format_guid(data: bytes) -> str:
    """Format a binary Active Directory GUID as a string.

    Active Directory stores ``objectGUID`` in the Microsoft mixed-endian
    layout: the first three groups are little-endian and the last two are
    big-endian.

    Parameters
    ----------
    data
        The 16 bytes of the GUID.

    Returns
    -------
    str
        The GUID as 32 lowercase hex digits in the usual hyphenated groups.

    Raises
    ------
    ValueError
        Raised if ``data`` is not 16 bytes long.

    Examples
    --------
    >>> format_guid(bytes(range(1, 17)))
    '04030201-0605-0807-090a-0b0c0d0e0f10'
    """
    return str(uuid.UUID(bytes_le=bytes(data)))


def decode_strings(attribute: DirectoryAttribute) -> list[Any]:
    """Decode attribute values as strings."""
    return attribute.strings


def decode_bytes(attribute: DirectoryAttribute) -> list[Any]:
    """Keep attribute values as raw bytes."""
    return attribute.buffers


def decode_guid(attribute: DirectoryAttribute) -> list[Any]:
    """Format the first value of the attribute as a GUID.

    Some servers other than Active Directory publish ``objectGUID`` as text
    rather than as 16 binary bytes. Values of any other length are returned
    as strings unchanged.
    """
    buffers = attribute.buffers
    if not buffers:
        return []
    if len(buffers[0]) != 16:
        return [attribute.strings[0]]
    return [format_guid(buffers[0])]


ATTRIBUTE_DECODERS: dict[str, AttributeDecoder] = {
    GUID_ATTRIBUTE.lower(): decode_guid,
    PHOTO_ATTRIBUTE.lower(): decode_bytes,
}
"""Decoders for attributes that need special handling, by lowercase name.

Attribute types not listed here are decoded with `decode_strings`.
"""


def decode_entry(entry: DirectoryEntry) -> dict[str, Any]:
    """Convert an LDAP entry into a profile dictionary.

    Each attribute becomes a key of the dictionary. An attribute with a
    single value maps to that value, one with several values maps to the list
    of them, and one with no values maps to an empty list.

    Parameters
    ----------
    entry
        The entry from an LDAP search.

    Returns
    -------
    dict
        The decoded entry. It always contains ``dn``, the DN of the entry,
        and ``controls``, the JSON form of any controls returned with the
        entry.
    """
    profile: dict[str, Any] = {"dn": entry.dn, "controls": []}
    for attribute in entry.attributes:
        name = attribute.type.lower()
        decoder = ATTRIBUTE_DECODERS.get(name, decode_strings)
        values = decoder(attribute)
        if len(values) == 1:
            profile[attribute.type] = values[0]
        else:
            profile[attribute.type] = list(values)
    for control in entry.controls:
        profile["controls"].append(control.to_json())
    return profile
