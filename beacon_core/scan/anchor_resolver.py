"""
Anchor identity resolution.

Maps a raw detection onto the name reported to the collector. Pure
functions, independent of scan window state.
"""

from typing import Optional

from beacon_core.proto import AnchorRegistry


def normalize_address(address) -> Optional[str]:
    """
    Normalise a hardware address.

    Returns:
        Upper-cased, stripped address, or None if missing/blank/not a string
    """
    if not isinstance(address, str):
        return None
    address = address.strip()
    if not address:
        return None
    return address.upper()


def resolve_anchor_name(
    address: str,
    advertised_name: Optional[str] = None,
    registry: Optional[AnchorRegistry] = None,
) -> str:
    """
    Resolve the anchor name for a detection.

    Resolution order:
    1. Name of the registered anchor with this address
    2. Advertised name (blank names count as absent)
    3. Raw hardware address

    Args:
        address: Normalised hardware address
        advertised_name: Name from the advertisement, if any
        registry: Deployment anchors

    Returns:
        Best-effort anchor name, never empty for a non-empty address
    """
    if registry is not None:
        anchor = registry.get_by_address(address)
        if anchor is not None:
            return anchor.name

    if advertised_name and advertised_name.strip():
        return advertised_name.strip()

    return address
