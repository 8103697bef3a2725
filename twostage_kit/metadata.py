from __future__ import annotations

import json
from pathlib import Path
from typing import Dict, List, Union


def _ordered(names: Dict[int, str], source: Union[str, Path]) -> List[str]:
    if not names:
        raise ValueError(f"No class names found in {source}")
    expected = list(range(len(names)))
    if sorted(names) != expected:
        raise ValueError(f"Class ids in {source} must be contiguous from 0, got {sorted(names)}")
    return [names[i] for i in expected]


def load_class_names(metadata_path: Union[str, Path]) -> List[str]:
    """
    Load classifier labels in class enumeration order.

    Two formats are accepted:

    - JSON: a list of names, or an object mapping ids to names ({"0": "apple", ...})
    - the lightweight `names:` mapping used by YOLO metadata files:

        names:
          0: apple
          1: banana
          ...

    The returned order is the classifier's class order and is used to break
    probability ties.
    """

    path = Path(metadata_path)
    text = path.read_text(encoding="utf-8")

    if path.suffix.lower() == ".json":
        payload = json.loads(text)
        if isinstance(payload, list) and all(isinstance(n, str) for n in payload):
            if not payload:
                raise ValueError(f"No class names found in {path}")
            return list(payload)
        if isinstance(payload, dict):
            try:
                names = {int(k): str(v) for k, v in payload.items()}
            except ValueError as e:
                raise ValueError(f"Label ids in {path} must be integers") from e
            return _ordered(names, path)
        raise ValueError(f"Unsupported label JSON in {path}: expected a list or an object")

    names: Dict[int, str] = {}
    in_names = False
    for raw in text.splitlines():
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

    return _ordered(names, path)
