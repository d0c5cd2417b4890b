from typing import Any, Dict, Iterable, List, Optional, Tuple

from .models import FlatComment


def _to_flat_comment(data: Dict[str, Any], parent_id: Optional[str]) -> FlatComment:
    return FlatComment(
        id=str(data.get("id", "") or ""),
        author=data.get("author"),
        body=data.get("body", "") or "",
        score=int(data.get("score", 0) or 0),
        created_utc=data.get("created_utc", 0) or 0,
        parent_id=parent_id,
        permalink=data.get("permalink", "") or "",
    )


def _reply_children(data: Dict[str, Any]) -> list:
    # "replies" is an empty string when a comment has no inline replies
    replies = data.get("replies", "")
    if not replies or isinstance(replies, str):
        return []
    return (replies.get("data", {}) or {}).get("children", []) or []


def flatten_comments(
    children: Iterable[Dict[str, Any]],
    parent_id: Optional[str] = None,
    limit: Optional[int] = None,
) -> Tuple[List[FlatComment], List[str]]:
    """
    Flatten a comment listing depth-first (pre-order).

    Returns (records, more_ids). Each comment is emitted before its replies,
    siblings keep source order. "more" placeholders contribute their child
    ids to more_ids and are not descended into.

    With a limit, traversal stops as soon as `limit` records were emitted:
    siblings and subtrees not yet visited are skipped, so placeholders that
    sit after the cut-off are never collected.
    """
    records: List[FlatComment] = []
    more_ids: List[str] = []

    def _full() -> bool:
        return limit is not None and len(records) >= limit

    def _walk(nodes: Iterable[Dict[str, Any]], parent: Optional[str]) -> None:
        for node in nodes:
            if _full():
                return
            kind = node.get("kind")
            data = node.get("data", {}) or {}
            if kind == "t1":
                record = _to_flat_comment(data, parent)
                records.append(record)
                replies = _reply_children(data)
                if replies:
                    _walk(replies, record.id)
            elif kind == "more":
                more_ids.extend(str(x) for x in (data.get("children") or []) if x)

    _walk(children, parent_id)
    return records, more_ids


def _parent_from_fullname(fullname: Optional[str]) -> Optional[str]:
    # "t1_abc" -> "abc" (reply), "t3_xyz" -> None (top-level, parent is the post)
    if not fullname:
        return None
    kind, _, bare = str(fullname).partition("_")
    if kind == "t3":
        return None
    if kind == "t1" and bare:
        return bare
    return str(fullname)


def parse_more_things(
    things: Iterable[Dict[str, Any]],
    limit: Optional[int] = None,
) -> List[FlatComment]:
    """
    Convert the flat `things` list of a morechildren response.

    Entries are not nested, so the parent comes from the entry itself. Its
    fullname is reduced to the form tree records use: "t1_abc" becomes "abc",
    a "t3_" parent (the post) becomes None.
    """
    out: List[FlatComment] = []
    for thing in things:
        if limit is not None and len(out) >= limit:
            break
        if thing.get("kind") != "t1":
            continue
        data = thing.get("data", {}) or {}
        out.append(_to_flat_comment(data, _parent_from_fullname(data.get("parent_id"))))
    return out
