import json
import math
from pathlib import Path
from typing import Any, Dict, List, Optional

from .config import DEFAULT_RESULTS_WANTED, PROXY_URLS, UNBOUNDED_RESULTS
from .errors import MissingInput
from .models import ThreadRequest


_MISSING = object()


def _as_number(raw: Any) -> float:
    """Loose numeric reading: null/false/""/[] -> 0, true -> 1, [x] -> x."""
    if raw is None:
        return 0.0
    if isinstance(raw, bool):
        return float(raw)
    if isinstance(raw, (int, float)):
        return float(raw)
    if isinstance(raw, str):
        s = raw.strip()
        if not s:
            return 0.0
        try:
            return float(s)
        except ValueError:
            return math.nan
    if isinstance(raw, list):
        if not raw:
            return 0.0
        if len(raw) == 1 and not isinstance(raw[0], (list, dict)):
            return _as_number("" if raw[0] is None else str(raw[0]))
    return math.nan


def coerce_results_wanted(raw: Any = _MISSING) -> int:
    """
    results_wanted rules:
    - key absent                         -> DEFAULT_RESULTS_WANTED (20)
    - anything that reads as a number    -> max(1, ceil(value))
      (null, false, "" and [] read as 0, true as 1)
    - non-numeric text, objects, inf/nan -> UNBOUNDED_RESULTS
    """
    if raw is _MISSING:
        return DEFAULT_RESULTS_WANTED
    value = _as_number(raw)
    if not math.isfinite(value):
        return UNBOUNDED_RESULTS
    # a fractional cap still lets the record that crosses it through
    return max(1, math.ceil(value))


def _proxy_urls_from(conf: Any) -> List[str]:
    if not conf:
        return []
    if isinstance(conf, str):
        return [conf]
    if isinstance(conf, list):
        return [str(u) for u in conf if u]
    if isinstance(conf, dict):
        urls = conf.get("proxyUrls") or conf.get("proxy_urls") or []
        return [str(u) for u in urls if u]
    return []


def load_input_file(path: Path) -> Dict[str, Any]:
    raw = Path(path).read_text(encoding="utf-8").strip()
    if not raw:
        return {}
    data = json.loads(raw)
    if not isinstance(data, dict):
        raise MissingInput(f"Input file {path} must contain a JSON object")
    return data


def build_request(
    data: Dict[str, Any],
    *,
    env_proxy_urls: Optional[List[str]] = None,
) -> ThreadRequest:
    start_url = str(data.get("startUrl") or data.get("start_url") or "").strip()
    if not start_url:
        raise MissingInput("startUrl is required")

    if "results_wanted" in data:
        results_wanted = coerce_results_wanted(data["results_wanted"])
    else:
        results_wanted = coerce_results_wanted()

    proxy_urls = _proxy_urls_from(data.get("proxyConfiguration"))
    if not proxy_urls:
        proxy_urls = list(PROXY_URLS if env_proxy_urls is None else env_proxy_urls)

    return ThreadRequest(
        start_url=start_url,
        results_wanted=results_wanted,
        proxy_urls=proxy_urls,
    )
