"""Constants for dirauth."""

__all__ = [
    "CONFIG_PATH",
    "CONFIG_PATH_ENV",
    "DEFAULT_MAX_CONNECTIONS",
    "DEFAULT_RECONNECT_ERRORS",
    "DEFAULT_SEARCH_QUERY",
    "GUID_ATTRIBUTE",
    "PHOTO_ATTRIBUTE",
    "SEARCH_PLACEHOLDER",
]

CONFIG_PATH = "/etc/dirauth/dirauth.yaml"
"""Default configuration path."""

CONFIG_PATH_ENV = "DIRAUTH_CONFIG_PATH"
"""Environment variable that overrides the configuration path."""

DEFAULT_SEARCH_QUERY = (
    "(&(objectclass=user)(|(sAMAccountName={0})(UserPrincipalName={0})))"
)
"""Default search filter for the user entry.

Matches Active Directory user objects by either the pre-Windows 2000 logon
name or the user principal name. ``{0}`` is replaced with the username.
"""

SEARCH_PLACEHOLDER = "{0}"
"""Placeholder in the search filter template that is replaced by the
username."""

DEFAULT_MAX_CONNECTIONS = 10
"""Default limit on simultaneously open LDAP connections per process."""

DEFAULT_RECONNECT_ERRORS = ("ECONNRESET", "ConnectionError")
"""Error codes treated as recoverable when ``reconnect`` is enabled.

Codes are the symbolic ``errno`` name for operating system errors and the
exception class name for errors raised by bonsai.
"""

GUID_ATTRIBUTE = "objectGUID"
"""Attribute holding the binary GUID of an Active Directory object."""

PHOTO_ATTRIBUTE = "thumbnailPhoto"
"""Attribute holding the binary photo of an Active Directory user."""
