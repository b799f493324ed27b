from pydantic import BaseModel, TypeAdapter
from typing import Any, List
import json
import sys

from models.hotspots import Hotspot
from models.transactions.poc_receipts_v1 import PocReceiptsV1


STDOUT = "stdout"

_challenge_list = TypeAdapter(List[PocReceiptsV1])
_hotspot_list = TypeAdapter(List[Hotspot])


def _plain(data: Any) -> Any:
    if isinstance(data, BaseModel):
        return data.model_dump(mode="json")
    if isinstance(data, (list, tuple)):
        return [_plain(d) for d in data]
    if isinstance(data, dict):
        return {k: _plain(v) for k, v in data.items()}
    return data


def to_json(data: Any) -> str:
    return json.dumps(_plain(data), indent=2)


def write_json(data: Any, filename: str = STDOUT):
    """pretty-prints models, lists of models or plain dicts to a file or stdout"""
    text = to_json(data)
    if filename == STDOUT:
        sys.stdout.write(text + "\n")
    else:
        with open(filename, "w") as f:
            f.write(text)


def load_challenges(filename: str) -> List[PocReceiptsV1]:
    with open(filename, "rb") as f:
        return _challenge_list.validate_json(f.read())


def load_hotspots(filename: str) -> List[Hotspot]:
    with open(filename, "rb") as f:
        return _hotspot_list.validate_json(f.read())
