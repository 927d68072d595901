"""Client-facing folders and the category filter each one maps to."""

from __future__ import annotations

from dataclasses import dataclass

from email_aggregator.exceptions import InvalidRequestError
from email_aggregator.models import Category

ALL_FOLDER = "all"


@dataclass(frozen=True)
class Folder:
    id: str
    label: str
    category: Category | None


FOLDERS: dict[str, Folder] = {
    f.id: f
    for f in (
        Folder(ALL_FOLDER, "All Mail", None),
        Folder("work", "Work", Category.WORK),
        Folder("personal", "Personal", Category.PERSONAL),
        Folder("promotional", "Promotional", Category.PROMOTION),
        Folder("newsletters", "Newsletters", Category.NEWSLETTER),
        Folder("updates", "Updates", Category.UPDATE),
    )
}


def category_for_folder(folder: str) -> Category | None:
    """Return the category filter for ``folder`` (``None`` for ``all``).

    Raises:
        InvalidRequestError: If ``folder`` is not a known folder id.
    """

    try:
        return FOLDERS[folder].category
    except KeyError:
        raise InvalidRequestError(
            f"Unknown folder {folder!r}; expected one of {', '.join(FOLDERS)}"
        ) from None
