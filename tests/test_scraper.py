import json

import httpx
import pytest
from builders import more, more_children_doc, t1, thread_doc

from reddit_thread_comments.dataset_store import DatasetStore
from reddit_thread_comments.errors import MalformedResponse, TransportFailure
from reddit_thread_comments.models import ThreadRequest
from reddit_thread_comments.scraper import expand_more_comments, parse_thread_document, run, scrape_thread


THREAD_URL = "https://www.reddit.com/r/test/comments/post1/title"


def _router(thread, more_handler=None):
    def handler(request):
        if request.url.path.endswith("/api/morechildren.json"):
            if more_handler is None:
                return httpx.Response(404)
            return more_handler(request)
        assert request.url.path == "/r/test/comments/post1/title/.json"
        return httpx.Response(200, json=thread)

    return handler


def _echo_more(request):
    ids = request.url.params["children"].split(",")
    things = [t1(cid, parent_id="t3_post1") for cid in ids]
    return httpx.Response(200, json=more_children_doc(things))


def _saved(store):
    return [(r["id"], r["parent_id"]) for r in store.iter_records()]


def test_parse_thread_document_rejects_bad_shapes():
    for doc in ({}, [], [{}], "nope", [{"data": {}}, {"data": {}}]):
        with pytest.raises(MalformedResponse):
            parse_thread_document(doc)


def test_scrape_thread_end_to_end(tmp_path, make_fetcher, run_async):
    thread = thread_doc([t1("a"), more("x", "y"), t1("b", [t1("c")])])
    fetcher = make_fetcher(_router(thread, _echo_more))
    store = DatasetStore(tmp_path)

    summary = run_async(
        scrape_thread(ThreadRequest(THREAD_URL, 10), store, fetcher=fetcher)
    )

    assert _saved(store) == [
        ("a", None),
        ("b", None),
        ("c", "b"),
        ("x", None),
        ("y", None),
    ]
    assert summary.post_id == "t3_post1"
    assert summary.subreddit == "test"
    assert (summary.from_thread, summary.from_more, summary.saved) == (3, 2, 5)

    more_request = fetcher.requests[-1]
    assert more_request.url.params["link_id"] == "t3_post1"
    assert more_request.url.params["children"] == "x,y"
    assert more_request.url.params["api_type"] == "json"


def test_cap_reached_in_thread_skips_continuation(tmp_path, make_fetcher, run_async):
    thread = thread_doc([t1("a"), t1("b", [t1("c")]), more("x")])
    fetcher = make_fetcher(_router(thread, _echo_more))
    store = DatasetStore(tmp_path)

    summary = run_async(scrape_thread(ThreadRequest(THREAD_URL, 2), store, fetcher=fetcher))

    assert _saved(store) == [("a", None), ("b", None)]
    assert summary.saved == 2
    assert len(fetcher.requests) == 1


def test_primary_failure_yields_no_records(tmp_path, make_fetcher, sleeps, run_async):
    def handler(request):
        raise httpx.ConnectError("down", request=request)

    store = DatasetStore(tmp_path)
    with pytest.raises(TransportFailure) as info:
        run_async(scrape_thread(ThreadRequest(THREAD_URL, 20), store, fetcher=make_fetcher(handler)))

    assert info.value.attempts == 3
    assert store.saved == 0
    assert list(store.iter_records()) == []
    assert sleeps == [2.0, 4.0]


def test_malformed_thread_is_fatal(tmp_path, make_fetcher, run_async):
    fetcher = make_fetcher(lambda request: httpx.Response(200, json=[{"kind": "Listing"}]))
    with pytest.raises(MalformedResponse):
        run_async(scrape_thread(ThreadRequest(THREAD_URL, 20), DatasetStore(tmp_path), fetcher=fetcher))


def test_failed_batch_keeps_thread_records_and_continues(tmp_path, make_fetcher, fake_sleep, sleeps, run_async):
    first_batch = [f"m{i:03d}" for i in range(100)]
    second_batch = [f"m{i:03d}" for i in range(100, 150)]
    thread = thread_doc([t1("a"), more(*first_batch), more(*second_batch)])

    def more_handler(request):
        if request.url.params["children"].startswith("m000"):
            return httpx.Response(500)
        return _echo_more(request)

    fetcher = make_fetcher(_router(thread, more_handler))
    store = DatasetStore(tmp_path)
    summary = run_async(
        scrape_thread(ThreadRequest(THREAD_URL, 1000), store, fetcher=fetcher, sleep=fake_sleep)
    )

    saved = _saved(store)
    assert saved[0] == ("a", None)
    assert [cid for cid, _ in saved[1:]] == second_batch
    assert summary.failed_batches == 1
    assert summary.from_more == 50
    # two backoffs for the failing batch, then the pause before the next one
    assert sleeps == [2.0, 4.0, 1.0]


def test_continuation_failure_after_thread_still_runs_to_completion(tmp_path, make_fetcher, run_async):
    thread = thread_doc([t1("a"), t1("b"), more("x")])

    def more_handler(request):
        return httpx.Response(200, json={"unexpected": True})

    store = DatasetStore(tmp_path)
    summary = run_async(
        scrape_thread(ThreadRequest(THREAD_URL, 20), store, fetcher=make_fetcher(_router(thread, more_handler)))
    )
    assert _saved(store) == [("a", None), ("b", None)]
    assert summary.failed_batches == 1


def test_expand_more_batches_and_delay(make_fetcher, run_async):
    delays = []

    async def batch_sleep(delay):
        delays.append(delay)

    ids = [f"m{i}" for i in range(250)]
    fetcher = make_fetcher(_echo_more)
    records, failed = run_async(
        expand_more_comments(
            fetcher,
            link_id="t3_post1",
            more_ids=ids,
            remaining=10_000,
            sleep=batch_sleep,
        )
    )

    sizes = [len(r.url.params["children"].split(",")) for r in fetcher.requests]
    assert sizes == [100, 100, 50]
    assert delays == [1.0, 1.0]
    assert failed == 0
    assert [r.id for r in records] == ids


def test_expand_more_requests_only_what_is_needed(make_fetcher, run_async):
    delays = []

    async def batch_sleep(delay):
        delays.append(delay)

    fetcher = make_fetcher(_echo_more)
    emitted = []
    records, _ = run_async(
        expand_more_comments(
            fetcher,
            link_id="t3_post1",
            more_ids=[f"m{i}" for i in range(150)],
            remaining=5,
            emit=emitted.append,
            sleep=batch_sleep,
        )
    )

    assert len(fetcher.requests) == 1
    assert fetcher.requests[0].url.params["children"] == "m0,m1,m2,m3,m4"
    assert delays == []
    assert [r.id for r in records] == ["m0", "m1", "m2", "m3", "m4"]
    assert emitted == records


def test_expand_more_skips_already_seen(make_fetcher, run_async):
    def handler(request):
        things = [t1("a", parent_id="t3_post1"), t1("n1", parent_id="t1_a"), more("deeper")]
        return httpx.Response(200, json=more_children_doc(things))

    records, _ = run_async(
        expand_more_comments(
            make_fetcher(handler),
            link_id="t3_post1",
            more_ids=["a", "n1"],
            remaining=10,
            seen={"a"},
        )
    )
    assert [(r.id, r.parent_id) for r in records] == [("n1", "a")]


def test_run_missing_url_exits_nonzero(tmp_path, run_async):
    messages = []
    code = run_async(run({}, tmp_path, log_callback=lambda msg, lvl="info": messages.append((lvl, msg))))
    assert code == 1
    assert ("error", "error during scraping: startUrl is required") in messages


def test_run_primary_failure_exits_nonzero(tmp_path, make_fetcher, run_async):
    fetcher = make_fetcher(lambda request: httpx.Response(403))
    code = run_async(run({"startUrl": THREAD_URL}, tmp_path, fetcher=fetcher))

    assert code == 1
    assert not (tmp_path / "comments.jsonl").exists()
    meta = json.loads((tmp_path / "run_meta.json").read_text(encoding="utf-8"))
    assert meta["ok"] is False
    assert meta["saved"] == 0


def test_run_success_writes_dataset(tmp_path, make_fetcher, run_async):
    thread = thread_doc([t1("a", [t1("a1")]), t1("b")])
    fetcher = make_fetcher(_router(thread))
    code = run_async(run({"startUrl": THREAD_URL + "/", "results_wanted": "2"}, tmp_path, fetcher=fetcher))

    assert code == 0
    lines = (tmp_path / "comments.jsonl").read_text(encoding="utf-8").splitlines()
    assert [json.loads(line)["id"] for line in lines] == ["a", "a1"]
    meta = json.loads((tmp_path / "run_meta.json").read_text(encoding="utf-8"))
    assert meta["ok"] is True
    assert meta["summary"]["saved"] == 2
    assert meta["request"]["results_wanted"] == 2


def test_post_without_fullname_skips_continuation(tmp_path, make_fetcher, run_async):
    thread = thread_doc([t1("a"), more("x")])
    del thread[0]["data"]["children"][0]["data"]["name"]
    messages = []
    fetcher = make_fetcher(_router(thread, _echo_more))
    store = DatasetStore(tmp_path)

    summary = run_async(
        scrape_thread(
            ThreadRequest(THREAD_URL, 20),
            store,
            fetcher=fetcher,
            log_callback=lambda msg, lvl="info": messages.append(lvl),
        )
    )

    assert _saved(store) == [("a", None)]
    assert summary.from_more == 0
    assert len(fetcher.requests) == 1
    assert "warning" in messages


def test_bad_comment_node_is_malformed(tmp_path, make_fetcher, run_async):
    thread = thread_doc([t1("a"), "not a node"])
    fetcher = make_fetcher(_router(thread))
    with pytest.raises(MalformedResponse):
        run_async(scrape_thread(ThreadRequest(THREAD_URL, 20), DatasetStore(tmp_path), fetcher=fetcher))


def test_run_bad_comment_node_exits_nonzero(tmp_path, make_fetcher, run_async):
    thread = thread_doc([t1("a", replies=[{"kind": "t1", "data": "broken"}])])
    code = run_async(run({"startUrl": THREAD_URL}, tmp_path, fetcher=make_fetcher(_router(thread))))

    assert code == 1
    meta = json.loads((tmp_path / "run_meta.json").read_text(encoding="utf-8"))
    assert meta["ok"] is False


def test_each_run_starts_from_empty_dataset(tmp_path, make_fetcher, run_async):
    thread = thread_doc([t1("a"), t1("b")])
    for _ in range(2):
        code = run_async(run({"startUrl": THREAD_URL}, tmp_path, fetcher=make_fetcher(_router(thread))))
        assert code == 0

    lines = (tmp_path / "comments.jsonl").read_text(encoding="utf-8").splitlines()
    assert [json.loads(line)["id"] for line in lines] == ["a", "b"]
    with (tmp_path / "comments.csv").open("r", encoding="utf-8-sig") as f:
        assert len(f.read().splitlines()) == 3

    def down(request):
        raise httpx.ConnectError("down", request=request)

    code = run_async(run({"startUrl": THREAD_URL}, tmp_path, fetcher=make_fetcher(down)))
    assert code == 1
    assert not (tmp_path / "comments.jsonl").exists()
    assert not (tmp_path / "comments.csv").exists()
