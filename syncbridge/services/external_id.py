"""External-identity scheme linking a record to its counterpart in another system.

An external id has the form ``"<system name>:<item id>"``. Only the first colon separates
the two parts, so item ids may contain colons while system names must not.
"""

from typing import Optional

_SEPARATOR = ":"


def create_external_id(system_name: str, item_id: str) -> str:
    """Build the external id for `item_id` living in `system_name`."""
    return f"{system_name}{_SEPARATOR}{item_id}"


def _split(external_id: Optional[str]) -> Optional[tuple[str, str]]:
    if not external_id:
        return None
    system_name, sep, item_id = external_id.partition(_SEPARATOR)
    if not sep:
        return None
    return system_name, item_id


def is_from_system(external_id: Optional[str], system_name: str) -> bool:
    """True if `external_id` points at a record of `system_name` (case-insensitive)."""
    parts = _split(external_id)
    if parts is None:
        return False
    return parts[0].casefold() == (system_name or "").casefold()


def get_system_name(external_id: Optional[str]) -> Optional[str]:
    """System part of an external id, or None when it is absent or malformed."""
    parts = _split(external_id)
    return parts[0] if parts else None


def get_item_id(external_id: Optional[str]) -> Optional[str]:
    """Item part of an external id, or None when it is absent or malformed."""
    parts = _split(external_id)
    return parts[1] if parts else None
