"""
Splits an ordered photo list into size-bounded archive volumes.
"""

from collections.abc import Iterable, Sequence

from gallery_delivery.models.photo import PhotoDescriptor, Volume


def plan_volumes(photos: Sequence[PhotoDescriptor], ceiling_bytes: int) -> list[Volume]:
    """
    Greedy, order-preserving bin packing in a single pass.

    Photos are appended to the current volume until the next one would push it
    past ``ceiling_bytes``; that photo then opens a new volume. A photo larger
    than the ceiling is never split and always ends up alone in its volume.

    Args:
        photos: Photos in gallery order.
        ceiling_bytes: Maximum cumulative size of a volume.

    Returns:
        Volumes numbered from 1. Concatenating their photos yields ``photos``.

    Raises:
        ValueError: If ceiling_bytes is not positive.
    """
    if ceiling_bytes <= 0:
        msg = "ceiling_bytes must be positive"
        raise ValueError(msg)

    volumes: list[Volume] = []
    current: list[PhotoDescriptor] = []
    current_bytes = 0

    for photo in photos:
        if current and current_bytes + photo.size_bytes > ceiling_bytes:
            volumes.append(_close(len(volumes) + 1, current, current_bytes))
            current, current_bytes = [], 0
        current.append(photo)
        current_bytes += photo.size_bytes

    if current:
        volumes.append(_close(len(volumes) + 1, current, current_bytes))
    return volumes


def plan_favorites(
    photos: Sequence[PhotoDescriptor],
    favorite_ids: Iterable[str],
    ceiling_bytes: int,
) -> list[Volume]:
    """
    Plan volumes for the favorites subset of a gallery.

    Favorites keep the order in which they were selected; IDs that are not in
    the gallery are ignored, as are repeated IDs.
    """
    return plan_volumes(select_favorites(photos, favorite_ids), ceiling_bytes)


def select_favorites(
    photos: Sequence[PhotoDescriptor], favorite_ids: Iterable[str]
) -> list[PhotoDescriptor]:
    by_id = {photo.id: photo for photo in photos}
    selected: list[PhotoDescriptor] = []
    seen: set[str] = set()
    for photo_id in favorite_ids:
        if photo_id in seen or photo_id not in by_id:
            continue
        seen.add(photo_id)
        selected.append(by_id[photo_id])
    return selected


def _close(index: int, photos: list[PhotoDescriptor], cumulative_bytes: int) -> Volume:
    return Volume(index=index, photos=tuple(photos), cumulative_bytes=cumulative_bytes)
