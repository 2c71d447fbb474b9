"""
Soot Assistant — Entity Resolver.

Turns an id or a user-supplied name into exactly one household record.
Names go through two passes, exact then substring, both case-insensitive.
Each pass either finds nothing (fall through / NotFound), one record
(returned) or several (Ambiguous). It never picks among candidates.
"""

from __future__ import annotations

import logging
from typing import Any

from src.core.errors import Ambiguous, NotFound, ToolValidationError
from src.data.db import KINDS, HouseholdDB
from src.data.models import Member

logger = logging.getLogger(__name__)

# French label used in error messages, per entity kind.
KIND_LABELS: dict[str, str] = {
    "task": "Tâche",
    "project": "Projet",
    "equipment": "Équipement",
    "zone": "Zone",
    "category": "Catégorie",
    "animal": "Animal",
    "person": "Personne",
    "shopping_list": "Liste d'achats",
    "shopping_item": "Article",
    "budget_entry": "Ligne de budget",
    "budget_recurring_entry": "Règle budgétaire récurrente",
    "important_date": "Date importante",
}


def _display(kind: str, record: Any) -> str:
    return getattr(record, KINDS[kind].name_column)


def _ambiguous(label: str, name: str, candidates: list[tuple[int, str]]) -> Ambiguous:
    listed = ", ".join(f"#{cid} « {cname} »" for cid, cname in candidates)
    return Ambiguous(
        f"{label}: plusieurs correspondances pour « {name} » ({listed}). "
        "Précise l'id à utiliser.",
        candidates,
    )


def _pick(label: str, name: str, matches: list[tuple[int, str, Any]]) -> Any | None:
    """0 -> None, 1 -> the record, many -> Ambiguous."""
    if not matches:
        return None
    if len(matches) > 1:
        logger.warning("Ambiguous %s '%s': %d candidates", label, name, len(matches))
        raise _ambiguous(label, name, [(mid, mname) for mid, mname, _ in matches])
    return matches[0][2]


def resolve(
    db: HouseholdDB,
    kind: str,
    house_id: int,
    entity_id: int | None = None,
    name: str | None = None,
    within: int | None = None,
) -> Any:
    """Return the single record matching the id or the name.

    Raises ToolValidationError when neither is given, NotFound when nothing
    matches inside the household, Ambiguous when a pass matches several.
    `within` narrows shopping items to one list.
    """
    label = KIND_LABELS[kind]
    name = (name or "").strip()

    if entity_id is not None:
        record = db.get_by_id(kind, house_id, entity_id)
        if record is None:
            logger.warning("%s #%s not found in household #%d", kind, entity_id, house_id)
            raise NotFound(f"{label} introuvable (id {entity_id}).")
        return record

    if not name:
        raise ToolValidationError(f"{label}: fournis un id ou un nom.")

    for exact in (True, False):
        found = db.find_by_name(kind, house_id, name, exact=exact, within=within)
        record = _pick(label, name, [(r.id, _display(kind, r), r) for r in found])
        if record is not None:
            return record

    logger.warning("%s '%s' not found in household #%d", kind, name, house_id)
    raise NotFound(f"{label} introuvable: « {name} ». Donne un id ou un nom plus précis.")


def resolve_optional(
    db: HouseholdDB,
    kind: str,
    house_id: int,
    entity_id: int | None = None,
    name: str | None = None,
    within: int | None = None,
) -> Any | None:
    """Like resolve(), but an absent reference yields None."""
    if entity_id is None and not (name or "").strip():
        return None
    return resolve(db, kind, house_id, entity_id, name, within)


def resolve_member(db: HouseholdDB, house_id: int, text: str | None) -> Member | None:
    """Match a household member by display name or e-mail.

    Same exact-then-contains policy as resolve(). Empty text yields None.
    """
    needle = (text or "").strip().casefold()
    if not needle:
        return None

    members = db.list_members(house_id)

    def keys(member: Member) -> list[str]:
        return [v.casefold() for v in (member.display_name, member.email) if v]

    passes = (
        [m for m in members if needle in keys(m)],
        [m for m in members if any(needle in k for k in keys(m))],
    )
    for matches in passes:
        member = _pick("Membre", text.strip(), [(m.id, m.display_name, m) for m in matches])
        if member is not None:
            return member

    logger.warning("Member '%s' not found in household #%d", text, house_id)
    raise NotFound(f"Membre introuvable: « {text.strip()} ».")
