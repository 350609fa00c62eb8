import json
from pathlib import Path
from typing import Any, Union


def load_json_file(path: Union[str, Path]) -> Any:
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)
