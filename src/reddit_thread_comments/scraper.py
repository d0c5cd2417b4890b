import asyncio
from dataclasses import asdict
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Tuple

from .config import MORE_CHILDREN_BATCH, MORE_CHILDREN_DELAY, OUTPUT_DIR, REDDIT_WWW_URL
from .dataset_store import DatasetStore
from .errors import MalformedResponse, ScrapeError, TransportFailure
from .fetcher import ProxyRotator, ThreadFetcher, build_json_url
from .flattener import flatten_comments, parse_more_things
from .models import FlatComment, ScrapeSummary, ThreadRequest
from .run_input import build_request


MORE_CHILDREN_URL = f"{REDDIT_WWW_URL}/api/morechildren.json"


def _noop_log(msg: str, lvl: str = "info") -> None:
    return None


def parse_thread_document(document: Any) -> Tuple[Dict[str, Any], List[Dict[str, Any]]]:
    """Split a thread document into (post data, top-level comment nodes)."""
    if not isinstance(document, list) or len(document) < 2:
        raise MalformedResponse("Invalid Reddit JSON response")
    try:
        post = document[0]["data"]["children"][0]["data"]
        comments = document[1]["data"]["children"]
    except (KeyError, IndexError, TypeError) as e:
        raise MalformedResponse(f"Invalid Reddit JSON response: missing {e}") from e
    if not isinstance(post, dict) or not isinstance(comments, list):
        raise MalformedResponse("Invalid Reddit JSON response")
    return post, comments


def _more_children_things(document: Any) -> List[Dict[str, Any]]:
    try:
        things = document["json"]["data"]["things"]
    except (KeyError, TypeError) as e:
        raise MalformedResponse(f"Unexpected morechildren response: missing {e}") from e
    if not isinstance(things, list):
        raise MalformedResponse("Unexpected morechildren response")
    return things


async def expand_more_comments(
    fetcher: ThreadFetcher,
    *,
    link_id: str,
    more_ids: List[str],
    remaining: int,
    seen: Optional[Set[str]] = None,
    emit: Optional[Callable[[FlatComment], None]] = None,
    batch_size: int = MORE_CHILDREN_BATCH,
    delay: float = MORE_CHILDREN_DELAY,
    log_callback=None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> Tuple[List[FlatComment], int]:
    """
    Resolve "more" placeholder ids through /api/morechildren.json.

    Ids go out in slices of `batch_size` (never more than still needed),
    one request at a time with `delay` seconds between requests. A batch
    that fails is logged and skipped. Returns (new records, failed batches).
    """
    log = log_callback or _noop_log
    seen = seen if seen is not None else set()
    collected: List[FlatComment] = []
    failed = 0
    total_batches = (len(more_ids) + batch_size - 1) // batch_size

    for start in range(0, len(more_ids), batch_size):
        if remaining <= 0:
            break
        ids_to_fetch = more_ids[start:start + batch_size][:min(batch_size, remaining)]
        if not ids_to_fetch:
            break

        batch_no = start // batch_size + 1
        log(f"fetching more batch {batch_no}/{total_batches}: {len(ids_to_fetch)} comments")
        params = {
            "api_type": "json",
            "link_id": link_id,
            "children": ",".join(ids_to_fetch),
            "limit_children": "false",
            "raw_json": 1,
        }
        try:
            result = await fetcher.fetch(MORE_CHILDREN_URL, params=params)
            if not result.ok:
                raise TransportFailure(MORE_CHILDREN_URL, result.cause, result.attempts)
            things = parse_more_things(_more_children_things(result.document))
        except Exception as e:
            failed += 1
            log(f"failed to fetch more comments batch {batch_no}: {e}", "warning")
        else:
            for c in things:
                if remaining <= 0:
                    break
                if not c.id or c.id in seen:
                    continue
                seen.add(c.id)
                collected.append(c)
                remaining -= 1
                if emit is not None:
                    emit(c)

        if start + batch_size < len(more_ids) and remaining > 0:
            await sleep(delay)

    return collected, failed


async def scrape_thread(
    request: ThreadRequest,
    store: DatasetStore,
    *,
    fetcher: Optional[ThreadFetcher] = None,
    log_callback=None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> ScrapeSummary:
    """
    Fetch one thread, flatten its comment tree into `store` and, while the
    cap allows, resolve "more" placeholders.

    Primary fetch problems raise TransportFailure / MalformedResponse.
    Whatever was collected is flushed to the store before returning or
    raising.
    """
    log = log_callback or _noop_log
    if fetcher is None:
        proxies = ProxyRotator(request.proxy_urls)
        log("using proxy pool" if proxies else "running without proxy")
        fetcher = ThreadFetcher(proxies=proxies, log_callback=log, sleep=sleep)

    cap = request.results_wanted
    summary = ScrapeSummary()
    json_url = build_json_url(request.start_url)
    log(f"fetching from: {json_url}")

    try:
        result = await fetcher.fetch(json_url)
        if not result.ok:
            if isinstance(result.cause, MalformedResponse):
                raise result.cause
            raise TransportFailure(json_url, result.cause, result.attempts)

        post, comment_nodes = parse_thread_document(result.document)
        summary.post_id = str(post.get("name", "") or "")
        summary.subreddit = str(post.get("subreddit", "") or "")
        log(f"post id: {summary.post_id}, subreddit: {summary.subreddit}")

        try:
            records, more_ids = flatten_comments(comment_nodes, limit=cap)
        except (AttributeError, TypeError, ValueError) as e:
            raise MalformedResponse(f"Invalid Reddit JSON response: bad comment node ({e})") from e
        store.push_many(records)
        summary.from_thread = len(records)
        log(f"initial extraction: {len(records)} comments from main thread")

        remaining = cap - len(records)
        if more_ids and remaining > 0 and not summary.post_id:
            log(f"post has no fullname, skipping {len(more_ids)} additional comment ids", "warning")
        elif more_ids and remaining > 0:
            log(f"found {len(more_ids)} additional comment ids to fetch")
            more_records, failed = await expand_more_comments(
                fetcher,
                link_id=summary.post_id,
                more_ids=more_ids,
                remaining=remaining,
                seen={r.id for r in records},
                emit=store.push,
                log_callback=log,
                sleep=sleep,
            )
            summary.from_more = len(more_records)
            summary.failed_batches = failed
            log(f"fetched {len(more_records)} additional comments from \"more\" API")
    finally:
        store.flush()
        summary.saved = store.saved

    log(f"total extracted: {summary.total_extracted} comments, saved: {summary.saved}", "success")
    return summary


async def run(
    input_data: Dict[str, Any],
    output_dir: Path = Path(OUTPUT_DIR),
    *,
    fetcher: Optional[ThreadFetcher] = None,
    log_callback=None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> int:
    """Run one scrape end to end; returns a process exit code."""
    log = log_callback or _noop_log
    try:
        request = build_request(input_data)
    except ScrapeError as e:
        log(f"error during scraping: {e}", "error")
        return 1

    store = DatasetStore(output_dir, fresh=True, log_callback=log)
    meta: Dict[str, Any] = {
        "request": {
            "start_url": request.start_url,
            "results_wanted": request.results_wanted,
            "proxy_count": len(request.proxy_urls),
        },
    }
    try:
        summary = await scrape_thread(
            request, store, fetcher=fetcher, log_callback=log, sleep=sleep
        )
    except ScrapeError as e:
        log(f"error during scraping: {e}", "error")
        meta.update({"ok": False, "error": str(e), "saved": store.saved})
        return 1
    else:
        meta.update({"ok": True, "summary": asdict(summary)})
        return 0
    finally:
        store.close()
        store.write_run_meta(meta)
