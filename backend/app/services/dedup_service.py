"""
Moteur de déduplication et de fusion des passages (fonctions pures, aucune E/S).

Deux niveaux :
- exact : même élève, même type, même seconde UTC → une seule entrée
- flou  : même élève, même type, écart ≤ 10 s → même événement physique
  (le même scan enregistré localement puis par le backend avec une légère
  dérive d'horloge)

Règle de préférence entre deux représentations d'un même événement :
1. celle qui porte un cours l'emporte
2. puis celle dont l'identifiant est un UUID (déjà connue du backend)
3. puis la plus récente ; à égalité, la première
"""

from datetime import timedelta, timezone
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from app.schemas.attendance import AttendanceEntry
from app.services.identifiers import is_uuid

DEFAULT_WINDOW = timedelta(seconds=10)


def _second_key(entry: AttendanceEntry) -> Tuple[str, str, str]:
    ts = entry.timestamp.astimezone(timezone.utc).replace(microsecond=0)
    return (entry.student_id, entry.type, ts.isoformat())


def _newest_first(records: Iterable[AttendanceEntry]) -> List[AttendanceEntry]:
    return sorted(records, key=lambda r: r.timestamp, reverse=True)


def deduplicate_attendance(records: Sequence[AttendanceEntry]) -> List[AttendanceEntry]:
    """
    Déduplication exacte sur (élève, type, horodatage tronqué à la seconde).

    Dans un groupe, l'horodatage le plus tardif est conservé ; à égalité,
    l'entrée qui apparaît en dernier dans l'entrée l'emporte.
    Sortie triée du plus récent au plus ancien. Idempotente.
    """
    groups: Dict[Tuple[str, str, str], AttendanceEntry] = {}
    for record in records:
        key = _second_key(record)
        kept = groups.get(key)
        if kept is None or record.timestamp >= kept.timestamp:
            groups[key] = record
    return _newest_first(groups.values())


def pick_better(a: AttendanceEntry, b: AttendanceEntry) -> AttendanceEntry:
    """Choisit la meilleure représentation d'un même événement."""
    if bool(a.course) != bool(b.course):
        return a if a.course else b
    if is_uuid(a.id) != is_uuid(b.id):
        return a if is_uuid(a.id) else b
    return b if b.timestamp > a.timestamp else a


def _same_event(a: AttendanceEntry, b: AttendanceEntry, window: timedelta) -> bool:
    return (
        a.student_id == b.student_id
        and a.type == b.type
        and abs(a.timestamp - b.timestamp) <= window
    )


def merge_attendance(
    records: Sequence[AttendanceEntry],
    window: timedelta = DEFAULT_WINDOW,
) -> List[AttendanceEntry]:
    """
    Fusion floue : les entrées d'un même élève et d'un même type séparées
    de moins de `window` sont un seul événement, résolu par pick_better.
    Sortie triée du plus récent au plus ancien.
    """
    merged: List[AttendanceEntry] = []
    for record in records:
        for i, kept in enumerate(merged):
            if kept.id == record.id or _same_event(kept, record, window):
                merged[i] = pick_better(kept, record)
                break
        else:
            merged.append(record)
    return _newest_first(merged)


def fold_attendance_change(
    records: Sequence[AttendanceEntry],
    entry: AttendanceEntry,
    window: timedelta = DEFAULT_WINDOW,
) -> Tuple[List[AttendanceEntry], Optional[str]]:
    """
    Applique un INSERT temps réel à la liste locale.

    - même identifiant : remplacement
    - événement flou correspondant : résolu par pick_better
    - sinon : ajout en tête

    Retourne (nouvelle liste, identifiant local remplacé ou None).
    """
    result = list(records)

    for i, existing in enumerate(result):
        if existing.id == entry.id:
            result[i] = entry
            return result, None

    for i, existing in enumerate(result):
        if _same_event(existing, entry, window):
            winner = pick_better(existing, entry)
            result[i] = winner
            replaced = existing.id if winner is not existing and existing.id != winner.id else None
            return result, replaced

    result.insert(0, entry)
    return result, None


def superseded_ids(
    before: Iterable[AttendanceEntry],
    after: Iterable[AttendanceEntry],
) -> List[str]:
    """Identifiants présents avant une fusion et absents après (tombstones à émettre)."""
    kept = {r.id for r in after}
    removed: List[str] = []
    for record in before:
        if record.id not in kept and record.id not in removed:
            removed.append(record.id)
    return removed
