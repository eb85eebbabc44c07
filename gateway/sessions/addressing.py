"""
sessions/addressing.py
----------------------
Phone number, group id and account id normalisation for the protocol's
addressing scheme ("<digits>@s.whatsapp.net", "<id>@g.us").
"""

import re
from urllib.parse import unquote, urlsplit

from gateway.sessions.errors import InvalidDestination

USER_SERVER = "s.whatsapp.net"
GROUP_SERVER = "g.us"
DEFAULT_FILE_NAME = "documento.pdf"

_NON_DIGITS = re.compile(r"\D")
_GROUP_ID = re.compile(r"^\d+(-\d+)?$")


def normalize_phone(raw: str) -> str:
    """
    "+57 300 111 2222" -> "573001112222".

    Raises:
        InvalidDestination: if the input contains no digits.
    """
    digits = _NON_DIGITS.sub("", raw or "")
    if not digits:
        raise InvalidDestination(f"'{raw}' is not a phone number")
    return digits


def to_address(raw: str) -> str:
    return f"{normalize_phone(raw)}@{USER_SERVER}"


def to_group_address(raw: str) -> str:
    """
    "120363025246125486@g.us" or "120363025246125486" -> "120363025246125486@g.us".

    Raises:
        InvalidDestination: if the input is not a group id.
    """
    group_id = (raw or "").strip()
    suffix = "@" + GROUP_SERVER
    if group_id.endswith(suffix):
        group_id = group_id[: -len(suffix)]
    if not _GROUP_ID.match(group_id):
        raise InvalidDestination(f"'{raw}' is not a group id")
    return f"{group_id}{suffix}"


def normalize_identity(account_id: str) -> str:
    """
    Reduce a connected account id to its phone number.

    "573001112222:7@s.whatsapp.net" -> "573001112222"
    """
    user = account_id.split("@", 1)[0]
    return user.split(":", 1)[0]


def file_name_from_url(url: str) -> str:
    """Last path segment of the URL, without query string."""
    path = urlsplit(url).path
    name = unquote(path.rsplit("/", 1)[-1]) if path else ""
    return name or DEFAULT_FILE_NAME
