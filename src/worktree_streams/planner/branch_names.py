"""Branch name generation for streams."""

from __future__ import annotations

import re
import secrets
from datetime import date

DEFAULT_NAMESPACE = "gwt"
MAX_SLUG_LENGTH = 40

_NON_ALNUM = re.compile(r"[^a-z0-9]+")


def slugify(identifier: str, max_length: int = MAX_SLUG_LENGTH) -> str:
    """Lower-case, collapse non-alphanumeric runs to '-', and truncate."""
    slug = _NON_ALNUM.sub("-", identifier.lower()).strip("-")
    return slug[:max_length].rstrip("-")


def generate_branch_name(
    identifier: str | None = None,
    namespace: str = DEFAULT_NAMESPACE,
    today: date | None = None,
) -> str:
    """Build ``<namespace>/<slug>-<4 hex>``.

    Without a usable identifier the slug is ``task-YYYYMMDD``. The random
    suffix keeps names unique across repeated runs with the same id.
    """
    slug = slugify(identifier) if identifier else ""
    if not slug:
        slug = f"task-{(today or date.today()).strftime('%Y%m%d')}"
    return f"{namespace}/{slug}-{secrets.token_hex(2)}"
