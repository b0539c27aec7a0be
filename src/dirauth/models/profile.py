"""Models for the user profile returned after authentication."""

from __future__ import annotations

from typing import Annotated, Any, Self

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

__all__ = [
    "UserEmail",
    "UserName",
    "UserProfile",
]


def _first(profile: dict[str, Any], *keys: str) -> Any:
    """Return the first single value of the first key present in profile."""
    for key in keys:
        value = profile.get(key)
        if isinstance(value, list):
            value = value[0] if value else None
        if value is not None:
            return value
    return None


class UserName(BaseModel):
    """Components of the user's name."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    family_name: Annotated[
        str | None, Field(title="Family name", examples=["Smith"])
    ] = None

    given_name: Annotated[
        str | None, Field(title="Given name", examples=["Alice"])
    ] = None


class UserEmail(BaseModel):
    """One email address of the user."""

    value: Annotated[
        str, Field(title="Email address", examples=["alice@example.com"])
    ]


class UserProfile(BaseModel):
    """Profile of an authenticated user.

    Built from the decoded directory entry of the user. The full decoded
    entry is included as ``entry`` for clients that need other attributes.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        ser_json_bytes="base64",
    )

    id: Annotated[
        str | None,
        Field(
            title="Unique identifier",
            description="The ``objectGUID`` of the entry, or else its ``uid``",
            examples=["04030201-0605-0807-090a-0b0c0d0e0f10"],
        ),
    ] = None

    display_name: Annotated[
        str | None, Field(title="Display name", examples=["Alice Smith"])
    ] = None

    name: Annotated[
        UserName, Field(default_factory=UserName, title="Name")
    ]

    emails: Annotated[
        list[UserEmail] | None,
        Field(title="Email addresses", description="Values of ``mail``"),
    ] = None

    entry: Annotated[
        dict[str, Any],
        Field(
            title="Directory entry",
            description="The decoded directory entry of the user",
        ),
    ]

    @classmethod
    def from_directory(cls, profile: dict[str, Any]) -> Self:
        """Build the user profile from a decoded directory entry.

        Parameters
        ----------
        profile
            Directory entry as returned by `~dirauth.decoder.decode_entry`.

        Returns
        -------
        UserProfile
            The corresponding user profile.
        """
        mail = profile.get("mail")
        if mail is None or mail == []:
            emails = None
        else:
            addresses = mail if isinstance(mail, list) else [mail]
            emails = [UserEmail(value=a) for a in addresses]
        return cls(
            id=_first(profile, "objectGUID", "uid"),
            display_name=_first(profile, "displayName"),
            name=UserName(
                family_name=_first(profile, "sn", "surName"),
                given_name=_first(profile, "gn", "givenName"),
            ),
            emails=emails,
            entry=profile,
        )
