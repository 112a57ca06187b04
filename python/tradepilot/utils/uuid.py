import uuid
from typing import Optional


def generate_uuid(prefix: Optional[str] = None) -> str:
    """Return a random hex id, optionally prefixed (e.g. `cycle-3f2a...`)."""
    value = uuid.uuid4().hex
    if prefix:
        return f"{prefix}-{value}"
    return value
