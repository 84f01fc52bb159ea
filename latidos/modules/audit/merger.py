# latidos/modules/audit/merger.py
"""
Fusión de contribuciones de los participantes sobre un producto.

Cada entrada tiene la forma::

    {"participantId", "participantName", "count", "observations",
     "updatedAt", "countedAt"}

``count`` y ``observations`` solo existen si el participante los envió
alguna vez. ``updatedAt`` cambia con cualquier dato; ``countedAt`` solo
cuando cambia el conteo. Funciones puras: no hacen I/O ni mutan sus
argumentos.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

CONTRIBUTION_FIELDS = ("count", "observations")


def _stamp(now: datetime) -> str:
    return now.isoformat(timespec="microseconds")


def merge_contribution(
    contributions: Optional[List[Dict[str, Any]]],
    participant_id: str,
    participant_name: str,
    changes: Dict[str, Any],
    now: datetime
) -> List[Dict[str, Any]]:
    """
    Fusionar la actualización de un participante en la lista de contribuciones.

    ``changes`` contiene únicamente los campos enviados (``count`` y/o
    ``observations``). Sin cambios (señal de foco) la lista se devuelve
    intacta. La entrada existente del participante se actualiza en su
    posición; si no existe se agrega al final.
    """
    current = [dict(entry) for entry in (contributions or [])]
    data = {key: value for key, value in changes.items() if key in CONTRIBUTION_FIELDS}

    if not data:
        return current

    entry = next((e for e in current if e.get("participantId") == participant_id), None)
    if entry is None:
        entry = {"participantId": participant_id}
        current.append(entry)

    entry.update(data)
    entry["participantName"] = participant_name
    entry["updatedAt"] = _stamp(now)
    if "count" in data:
        entry["countedAt"] = _stamp(now)
    return current


def resolve_physical_count(contributions: Optional[List[Dict[str, Any]]]) -> Optional[int]:
    """
    Conteo físico canónico de un producto.

    Gana la contribución con conteo más reciente (``countedAt``; las
    entradas sin él usan ``updatedAt``). En empate gana la que aparece
    después en la lista. Sin conteos -> ``None``.
    """
    best = None
    best_stamp = None
    for entry in contributions or []:
        count = entry.get("count")
        if count is None:
            continue
        stamp = entry.get("countedAt") or entry.get("updatedAt") or ""
        if best_stamp is None or stamp >= best_stamp:
            best, best_stamp = count, stamp
    return best


def combine_observations(contributions: Optional[List[Dict[str, Any]]]) -> str:
    """Observaciones de todos los participantes, en orden de la lista"""
    parts = []
    for entry in contributions or []:
        text = (entry.get("observations") or "").strip()
        if text:
            parts.append(f"{entry.get('participantName') or entry.get('participantId')}: {text}")
    return "; ".join(parts)
