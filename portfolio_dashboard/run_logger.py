import json
import time
from pathlib import Path
from typing import Any, Dict, Union


def log_event(log_dir: Union[str, Path], event: str, payload: Dict[str, Any]) -> None:
    log_dir = Path(log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)
    log_path = log_dir / "load.log"
    entry = {"ts": time.time(), "event": event, "payload": payload}
    with open(log_path, "a", encoding="utf-8") as f:
        f.write(json.dumps(entry, ensure_ascii=False, default=str) + "\n")
