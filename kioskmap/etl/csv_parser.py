"""Lenient CSV parsing for the published spreadsheet exports."""

import logging
from typing import Dict, List, Mapping

logger = logging.getLogger(__name__)

RawRow = Dict[str, str]

# Spreadsheet header -> canonical field name. Unknown headers pass through.
COLUMN_MAP: Mapping[str, str] = {
    "ID": "id",
    "Estado Kiosco": "status",
    "Paquete": "package",
    "Domicilio": "address",
    "Entre Calle 1": "cross_street_1",
    "Entre Calle 2": "cross_street_2",
    "Pais": "country",
    "Provincia": "province",
    "Partido": "district",
    "Localidad / Barrio": "locality",
    "N° Vendedor": "vendor_number",
    "Distribuidora": "distributor",
    "Dias de atención": "attendance_days",
    "Horario": "business_hours",
    "Escaparate": "storefront",
    "Ubicación": "location_description",
    "Fachada puesto": "facade",
    "Venta productos no editoriales": "non_editorial_sales",
    "Reparto": "delivery",
    "Suscripciones": "subscriptions",
    "Nombre y Apellido": "contact_name",
    "Mayor venta": "top_seller",
    "Utiliza Parada Online": "uses_online_ordering",
    "Teléfono": "phone",
    "Correo electrónico": "email",
    "Relevado por": "surveyed_by",
    "Observaciones": "observations",
    "Comentarios": "comments",
    "IMG": "image_url",
    "Latitud": "latitude",
    "Longitud": "longitude",
    "DISPOSITIVO": "device",
}


def parse_csv_line(line: str, delimiter: str = ",") -> List[str]:
    """Split one CSV line, honouring double quotes and ``""`` escapes.

    Malformed quoting never raises: a stray quote simply toggles the quoted
    state. Every field is stripped of surrounding whitespace.
    """
    fields: List[str] = []
    current: List[str] = []
    in_quotes = False
    i = 0
    length = len(line)

    while i < length:
        char = line[i]
        if char == '"':
            if in_quotes and i + 1 < length and line[i + 1] == '"':
                current.append('"')
                i += 1
            else:
                in_quotes = not in_quotes
        elif char == delimiter and not in_quotes:
            fields.append("".join(current).strip())
            current = []
        else:
            current.append(char)
        i += 1

    fields.append("".join(current).strip())
    return fields


def _dedupe_header(names: List[str]) -> List[str]:
    """Give blank and repeated header names distinct keys.

    Blank headers become ``column_<n>`` (1-based position); a repeated name
    gets a ``_2``, ``_3``... suffix so every column keeps its own key.
    """
    header: List[str] = []
    seen = set()
    for position, name in enumerate(names, start=1):
        key = name or f"column_{position}"
        candidate, suffix = key, 2
        while candidate in seen:
            candidate = f"{key}_{suffix}"
            suffix += 1
        seen.add(candidate)
        header.append(candidate)
    return header


def parse_csv(text: str, column_map: Mapping[str, str] = COLUMN_MAP) -> List[RawRow]:
    """Turn a CSV export into rows keyed by canonical field name.

    The first line is the header. Records are split on ``\\n`` only, so form
    feeds or Unicode line separators inside a cell stay in that cell. Blank
    lines are skipped, missing trailing values become empty strings and
    surplus values are ignored.
    """
    if not text:
        return []

    lines = text.lstrip("\ufeff").split("\n")
    header = _dedupe_header([column_map.get(name, name) for name in parse_csv_line(lines[0])])
    rows: List[RawRow] = []

    for line in lines[1:]:
        if not line.strip():
            continue
        values = parse_csv_line(line)
        row: RawRow = {}
        for index, key in enumerate(header):
            row[key] = values[index] if index < len(values) else ""
        rows.append(row)

    logger.debug("Parsed %d rows with %d columns", len(rows), len(header))
    return rows
