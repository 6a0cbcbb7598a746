"""
Deterministic routing of an invoice to an archive category and entity folder.

The registry is an ordered list; the first entry with an alias contained in
the normalized party name wins. No I/O happens here apart from the factory
optionally reading the registry from a JSON file at startup.
"""

import json
import re
from pathlib import Path

from loguru import logger
from pydantic import BaseModel, TypeAdapter

from ..models.invoice import Category, RoutingResult

UNKNOWN_ENTITY = "UNKNOWN ENTITY"

_PUNCTUATION = re.compile(r"[.,/#!$%^&*;:{}=\-_`~()]")
_WHITESPACE = re.compile(r"\s+")
# Trailing legal-form suffixes (Portuguese companies mostly)
_LEGAL_SUFFIX = re.compile(r"(?:\s+(?:LDA|SA|S A|SGPS|UNIPESSOAL|LIMITADA|LTD))+$")


def normalize_name(name: str | None, strip_legal_suffix: bool = True) -> str:
    """
    Uppercase, drop punctuation, collapse whitespace, optionally strip a
    trailing legal suffix, trim. Targets and aliases must both go through
    this exact function or substring matching silently fails.
    """
    if not name:
        return ""
    text = _PUNCTUATION.sub("", name.upper())
    text = _WHITESPACE.sub(" ", text).strip()
    if strip_legal_suffix:
        text = _LEGAL_SUFFIX.sub("", text).strip()
    return text


class RegistryEntry(BaseModel):
    category: Category
    folder: str
    aliases: list[str]


# Accented and unaccented spellings are listed separately on purpose:
# matching is plain substring, not accent-insensitive.
DEFAULT_REGISTRY: list[RegistryEntry] = [
    RegistryEntry(
        category=Category.SPVS_AGRIOPS,
        folder="AMANDEL - Sociedade Agrícola, Lda",
        aliases=["AMANDEL"],
    ),
    RegistryEntry(
        category=Category.SPVS_AGRIOPS,
        folder="OLIVAL DO SUL - Sociedade Agrícola, Lda",
        aliases=["OLIVAL DO SUL", "OLIVALDOSUL"],
    ),
    RegistryEntry(
        category=Category.SPVS_AGRIOPS,
        folder="VINHAS DA PLANÍCIE - Sociedade Agrícola, Lda",
        aliases=["VINHAS DA PLANÍCIE", "VINHAS DA PLANICIE"],
    ),
    RegistryEntry(
        category=Category.HOLDING,
        folder="PELA TERRA - Gestão de Ativos, SA",
        aliases=["PELA TERRA", "PELATERRA"],
    ),
]


class EntityRouter:
    """Maps extracted party names to a RoutingResult using an ordered registry."""

    def __init__(self, registry: list[RegistryEntry] | None = None, strip_legal_suffix: bool = True):
        self.registry = list(registry if registry is not None else DEFAULT_REGISTRY)
        self.strip_legal_suffix = strip_legal_suffix
        # Aliases normalized once, with the same function used for targets
        self._compiled = [
            (
                entry,
                [a for a in (normalize_name(alias, strip_legal_suffix) for alias in entry.aliases) if a],
            )
            for entry in self.registry
        ]

    def route(self, customer_name: str | None, supplier_name: str | None) -> RoutingResult:
        """
        Route an invoice. The customer (recipient) name is preferred; the
        supplier name is only used when no customer name was extracted.
        """
        target = normalize_name(customer_name, self.strip_legal_suffix)
        if not target:
            target = normalize_name(supplier_name, self.strip_legal_suffix)

        if target:
            for entry, aliases in self._compiled:
                if any(alias in target for alias in aliases):
                    return RoutingResult(category=entry.category, entity_folder_name=entry.folder)

        logger.debug("No registry match, routing to Unsorted", target=target)
        return RoutingResult(
            category=Category.UNSORTED,
            entity_folder_name=target or UNKNOWN_ENTITY,
        )


def load_registry(path: str | Path) -> list[RegistryEntry]:
    """Read an ordered registry from JSON: [{"category", "folder", "aliases"}, ...]"""
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    return TypeAdapter(list[RegistryEntry]).validate_python(data)


def create_entity_router(registry_path: str | None = None) -> EntityRouter:
    """
    Factory function using the configured registry file when one is set,
    otherwise the built-in registry.
    """
    from ..core.config import settings

    path = registry_path or settings.entity_registry_path
    if path:
        registry = load_registry(path)
        logger.info("Loaded entity registry", path=str(path), entries=len(registry))
        return EntityRouter(registry)
    return EntityRouter()
