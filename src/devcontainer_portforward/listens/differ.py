"""Listen snapshot differ."""

from collections.abc import Set

from devcontainer_portforward.models.listen import Endpoint


def diff_listens(
    previous: Set[Endpoint],
    current: Set[Endpoint],
) -> tuple[list[Endpoint], list[Endpoint]]:
    """
    Compute the changes between two listen snapshots.

    Args:
        previous: Endpoints bound at the previous poll (empty on the first poll).
        current: Endpoints bound now.

    Returns:
        (added, removed), each sorted by (ip, port) so the event order of a
        poll cycle is stable.
    """
    added = sorted(current - previous)
    removed = sorted(previous - current)
    return added, removed
