"""Maystro shipment status codes.

This module is the single source of truth for the numeric status code to
label mapping. Any other copy of the table (client code, reports, imports)
should be checked with ``find_label_divergences`` instead of being edited by
hand. Bump ``MAYSTRO_STATUS_TABLE_VERSION`` whenever a label changes.
"""

from typing import Any, Mapping, Optional

MAYSTRO_STATUS_TABLE_VERSION = "2024.1"

MAYSTRO_STATUS_LABELS: dict[int, str] = {
    4: "CRÉÉ",
    5: "DEMANDE DE RAMASSAGE",
    6: "EN COURS",
    8: "EN ATTENTE DE TRANSIT",
    9: "EN TRANSIT POUR EXPÉDITION",
    10: "EN TRANSIT POUR RETOUR",
    11: "EN ATTENTE",
    12: "EN RUPTURE DE STOCK",
    15: "PRÊT À EXPÉDIER",
    22: "ASSIGNÉ",
    31: "EXPÉDIÉ",
    32: "ALERTÉ",
    41: "LIVRÉ",
    42: "REPORTÉ",
    50: "ANNULÉ",
    51: "PRÊT À RETOURNER",
    52: "PRIS PAR LE MAGASIN",
    53: "NON REÇU",
}

DELIVERED_LABEL = MAYSTRO_STATUS_LABELS[41]
CANCELLED_LABEL = MAYSTRO_STATUS_LABELS[50]

# Shipment labels after which the provider will not change the order again.
FINAL_SHIPPING_LABELS = frozenset({DELIVERED_LABEL, CANCELLED_LABEL, MAYSTRO_STATUS_LABELS[52]})

# Shipment label -> internal order status.
ORDER_STATUS_BY_LABEL = {
    DELIVERED_LABEL: "DELIVERED",
    CANCELLED_LABEL: "CANCELLED",
}


def unknown_label(code: Any) -> str:
    return f"INCONNU ({code})"


def map_status(code: Any) -> str:
    """Return the label for a provider status code, accepting ints or numeric strings."""
    try:
        numeric = int(code)
    except (TypeError, ValueError):
        return unknown_label(code)
    return MAYSTRO_STATUS_LABELS.get(numeric, unknown_label(code))


def order_status_for_label(label: Optional[str]) -> Optional[str]:
    if not label:
        return None
    return ORDER_STATUS_BY_LABEL.get(label)


def find_label_divergences(candidate: Mapping[Any, str]) -> list[dict[str, Any]]:
    """Compare another code table against the authoritative one.

    Returns one entry per disagreeing code: ``kind`` is ``label_mismatch``,
    ``missing`` (code absent from the candidate) or ``unknown_code`` (code the
    authoritative table does not define).
    """
    normalized: dict[int, str] = {}
    divergences: list[dict[str, Any]] = []
    for raw_code, label in candidate.items():
        try:
            normalized[int(raw_code)] = label
        except (TypeError, ValueError):
            divergences.append({"code": raw_code, "kind": "unknown_code", "expected": None, "actual": label})

    for code, expected in sorted(MAYSTRO_STATUS_LABELS.items()):
        if code not in normalized:
            divergences.append({"code": code, "kind": "missing", "expected": expected, "actual": None})
        elif normalized[code] != expected:
            divergences.append(
                {"code": code, "kind": "label_mismatch", "expected": expected, "actual": normalized[code]}
            )

    for code in sorted(set(normalized) - set(MAYSTRO_STATUS_LABELS)):
        divergences.append({"code": code, "kind": "unknown_code", "expected": None, "actual": normalized[code]})
    return divergences


def status_table() -> dict[str, Any]:
    return {
        "version": MAYSTRO_STATUS_TABLE_VERSION,
        "codes": {str(code): label for code, label in MAYSTRO_STATUS_LABELS.items()},
    }
