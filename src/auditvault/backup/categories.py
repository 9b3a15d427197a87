"""
Catalog of backup categories and the exporter/importer contract.

A category is a named partition of application data. Each one is written to
a single JSON array file inside the payload and restored by upserting on a
natural key that is carried in the data itself, never on an identifier
assigned by a particular deployment.

Handlers are supplied by the application that owns the data. The contract:
    - export(dest_dir) writes the category file into dest_dir and always
      produces a valid JSON array, "[]" when there is nothing to export
    - restore(source_dir, mode) streams that file back, batching writes;
      in revert mode the category is emptied first; a missing file is a
      successful no-op
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol, runtime_checkable

from auditvault.backup.errors import UnknownCategoryError
from auditvault.backup.models import RestoreMode


@dataclass(frozen=True)
class Category:
    """
    One entry of the category catalog.

    Attributes:
        name: Display name used in manifests and requests.
        filename: JSON array file inside the payload.
        key_fields: Natural key used for upserts. Empty for singleton
            collections, which are always replaced wholesale.
        assets_dir: Payload subdirectory holding binary assets, if any.
    """

    name: str
    filename: str
    key_fields: tuple[str, ...] = ()
    assets_dir: str | None = None

    @property
    def collection(self) -> str:
        """Storage collection name (the file name without .json)."""
        return self.filename.removesuffix(".json")

    @property
    def is_singleton(self) -> bool:
        return not self.key_fields


AUDITS = Category("Audits", "audits.json", ("_id",))
VULNERABILITIES = Category("Vulnerabilities", "vulnerabilities.json", ("_id",))
VULNERABILITY_UPDATES = Category("Vulnerability Updates", "vulnerabilityUpdates.json", ("_id",))
USERS = Category("Users", "users.json", ("username",))
CLIENTS = Category("Clients", "clients.json", ("email",))
COMPANIES = Category("Companies", "companies.json", ("name",))
TEMPLATES = Category("Templates", "templates.json", ("name",), assets_dir="report-templates")
AUDIT_TYPES = Category("Audit Types", "auditTypes.json", ("name",))
CUSTOM_FIELDS = Category("Custom Fields", "customFields.json", ("label", "display", "displaySub"))
CUSTOM_SECTIONS = Category("Custom Sections", "customSections.json", ("field",))
VULNERABILITY_TYPES = Category("Vulnerability Types", "vulnerabilityTypes.json", ("name",))
VULNERABILITY_CATEGORIES = Category(
    "Vulnerability Categories", "vulnerabilityCategories.json", ("name",)
)
SETTINGS = Category("Settings", "settings.json")

# Reference data every restore needs; always exported and restored first
LANGUAGES = Category("Languages", "languages.json", ("language", "locale"))

ALL_CATEGORIES: tuple[Category, ...] = (
    AUDITS,
    VULNERABILITIES,
    VULNERABILITY_UPDATES,
    USERS,
    CLIENTS,
    COMPANIES,
    TEMPLATES,
    AUDIT_TYPES,
    CUSTOM_FIELDS,
    CUSTOM_SECTIONS,
    VULNERABILITY_TYPES,
    VULNERABILITY_CATEGORIES,
    SETTINGS,
)

ALL_CATEGORY_NAMES: tuple[str, ...] = tuple(c.name for c in ALL_CATEGORIES)

_BY_NAME: dict[str, Category] = {c.name: c for c in (*ALL_CATEGORIES, LANGUAGES)}

# Spellings written by older releases
_ALIASES: dict[str, str] = {
    "Vulnerabilities Updates": VULNERABILITY_UPDATES.name,
}


def get_category(name: str) -> Category:
    """
    Look up a category by name (aliases accepted).

    Raises:
        UnknownCategoryError: If the name is not in the catalog.
    """
    canonical = _ALIASES.get(name, name)
    category = _BY_NAME.get(canonical)
    if category is None:
        raise UnknownCategoryError(f"Unknown category: {name}")
    return category


def resolve_categories(names: Iterable[str] | None) -> list[Category]:
    """
    Resolve requested category names, keeping order and dropping duplicates.

    Args:
        names: Requested names, or None for every category.

    Returns:
        Categories in request order. Languages is never part of the result;
        the pipelines add it themselves.

    Raises:
        UnknownCategoryError: If any name is unknown.
    """
    if names is None:
        return list(ALL_CATEGORIES)

    resolved: dict[str, Category] = {}
    for name in names:
        category = get_category(name)
        if category is LANGUAGES:
            continue
        resolved.setdefault(category.name, category)
    return list(resolved.values())


def canonical_names(names: Iterable[str]) -> set[str]:
    """Map names (including aliases) to canonical names, ignoring unknown ones."""
    result = set()
    for name in names:
        canonical = _ALIASES.get(name, name)
        if canonical in _BY_NAME:
            result.add(canonical)
    return result


@runtime_checkable
class CategoryHandler(Protocol):
    """Exporter/importer pair for one category."""

    def export(self, dest_dir: Path) -> int:
        """Write the category file into dest_dir; return records written."""
        ...

    def restore(self, source_dir: Path, mode: RestoreMode) -> int:
        """Load the category file from source_dir; return records loaded."""
        ...
