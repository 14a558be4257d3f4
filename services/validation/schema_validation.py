from pathlib import Path
import json
from typing import List, Tuple

import jsonschema

REPO_ROOT = Path(__file__).resolve().parents[2]
SCHEMA_DIR = REPO_ROOT / "config" / "schemas"


def _load_schema(name: str) -> dict:
    schema_path = SCHEMA_DIR / f"{name}.schema.json"
    if not schema_path.exists():
        raise FileNotFoundError(f"Schema not found: {schema_path}")
    return json.loads(schema_path.read_text(encoding="utf-8"))


def validate_with_schema(data: dict, name: str) -> List[Tuple[str, str]]:
    """
    All schema violations as (json_path, message), ordered by path.
    An empty list means the document is valid; a missing schema is a single root error.
    """
    try:
        schema = _load_schema(name)
    except (OSError, ValueError) as e:
        return [("$", str(e))]

    validator = jsonschema.Draft7Validator(schema)
    out = []
    for err in sorted(validator.iter_errors(data), key=lambda e: [str(p) for p in e.absolute_path]):
        path = "$" + "".join(f"[{p}]" if isinstance(p, int) else f".{p}" for p in err.absolute_path)
        out.append((path, err.message))
    return out
