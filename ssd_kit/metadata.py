from __future__ import annotations

from typing import Dict


def load_class_names(metadata_path: str) -> Dict[int, str]:
    """
    Load class names for a detector.

    Two formats are understood:

    1. A `names:` mapping, as written next to exported models:

        names:
          0: person
          1: bicycle

    2. A plain label map, one label per line, where the line index is the
       class id (TFLite/TF SSD exports; `???` placeholders keep the numbering):

        person
        bicycle
        ???

    This function intentionally avoids adding a PyYAML dependency.
    """

    with open(metadata_path, "r", encoding="utf-8") as f:
        lines = [raw.rstrip("\r\n") for raw in f]

    if any(line.strip() == "names:" for line in lines):
        return _parse_names_mapping(lines)
    return _parse_label_lines(lines)


def _parse_names_mapping(lines) -> Dict[int, str]:
    names: Dict[int, str] = {}
    in_names = False
    for raw in lines:
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        if line == "names:":
            in_names = True
            continue
        if not in_names:
            continue

        # Parse "id: label"
        if ":" not in line:
            continue
        left, right = line.split(":", 1)
        left = left.strip()
        right = right.strip().strip("'").strip('"')
        if not left.isdigit():
            continue
        names[int(left)] = right
    return names


def _parse_label_lines(lines) -> Dict[int, str]:
    # Trailing blank lines are dropped; inner blank lines still take an id.
    while lines and not lines[-1].strip():
        lines = lines[:-1]
    return {i: line.strip() for i, line in enumerate(lines)}


def resolve_class_id(class_names: Dict[int, str], label: str) -> int:
    """
    Find the class id for `label` (case-insensitive).

    Raises ValueError if the label is missing or maps to several ids.
    """

    wanted = label.strip().lower()
    if not wanted:
        raise ValueError("label must be a non-empty string")
    ids = sorted(cid for cid, name in class_names.items() if str(name).strip().lower() == wanted)
    if not ids:
        raise ValueError(f"Label {label!r} not found in class names.")
    if len(ids) > 1:
        raise ValueError(f"Label {label!r} is ambiguous (ids {ids}).")
    return ids[0]
