import hashlib
from typing import Any, Optional
import orjson

KEY_PREFIX = "atelier"


def build_key(*parts: str) -> str:
    joined = ":".join(str(p) for p in parts if p is not None and p != "")
    if len(joined) > 200:
        return hashlib.sha256(joined.encode()).hexdigest()
    return joined


def serialize(value: Any) -> bytes:
    return orjson.dumps(value)


def deserialize(raw: Optional[bytes]) -> Any:
    if raw is None:
        return None
    return orjson.loads(raw)
