#!/usr/bin/env python3
"""
Normalization of VK posts, comments and profiles, and per-page profile resolution.
"""

from typing import Any, Dict, List, Optional


def deep_get(data: Any, path: List[Any]) -> Any:
    cur = data
    for key in path:
        if isinstance(cur, dict) and key in cur:
            cur = cur[key]
            continue
        if isinstance(cur, list) and isinstance(key, int) and 0 <= key < len(cur):
            cur = cur[key]
            continue
        return None
    return cur


def pick_first(data: dict, keys: List[str]) -> Any:
    for key in keys:
        if isinstance(data, dict) and data.get(key) is not None:
            return data[key]
    return None


def to_int(value: Any) -> int:
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            return 0
    return 0


def count_of(node: dict, key: str) -> int:
    # VK wraps engagement counters as {"count": N}
    value = node.get(key) if isinstance(node, dict) else None
    if isinstance(value, dict):
        return to_int(value.get("count"))
    return to_int(value)


def birth_year(bdate: Optional[str]) -> int:
    if not bdate:
        return 0
    parts = str(bdate).split(".")
    if len(parts) > 2:
        return to_int(parts[2])
    return 0


def parse_place(node: Any) -> dict:
    if not isinstance(node, dict):
        return {"id": 0, "title": ""}
    return {"id": to_int(node.get("id")), "title": node.get("title") or ""}


def parse_post(node: dict) -> dict:
    return {
        "id": to_int(node.get("id")),
        "from_id": to_int(node.get("from_id")),
        "owner_id": to_int(node.get("owner_id")),
        "date": to_int(node.get("date")),
        "post_type": node.get("post_type") or "",
        "text": node.get("text") or "",
        "likes": count_of(node, "likes"),
        "reposts": count_of(node, "reposts"),
        "views": count_of(node, "views"),
        "comments": count_of(node, "comments"),
    }


def parse_profile(node: dict) -> dict:
    bdate = node.get("bdate") or ""
    return {
        "id": to_int(node.get("id")),
        "first_name": node.get("first_name") or "",
        "last_name": node.get("last_name") or "",
        "sex": to_int(node.get("sex")),
        "bdate": bdate,
        "byear": birth_year(bdate),
        "city": parse_place(node.get("city")),
        "country": parse_place(node.get("country")),
    }


def build_post_url(group_id: str, post_id: str) -> str:
    abs_group_id = str(group_id).lstrip("-")
    return f"https://vk.com/public{abs_group_id}?w=wall{group_id}_{post_id}"


def parse_comment(node: dict, post_id: str, group_id: str, screen_name: str) -> dict:
    return {
        "id": to_int(node.get("id")),
        "from_id": to_int(node.get("from_id")),
        "post_id": str(post_id),
        "group_id": str(group_id),
        "group_screen_name": screen_name,
        "post_url": build_post_url(group_id, post_id),
        "date": to_int(node.get("date")),
        "text": node.get("text") or "",
        "likes": count_of(node, "likes"),
        "reply_to_user": to_int(node.get("reply_to_user")),
        "reply_to_comment": to_int(node.get("reply_to_comment")),
        "profile": None,
    }


def parse_item(node: dict, source_id: str) -> dict:
    """Flatten one ``{post_id, group_id, comments: {items, profiles}}`` entry."""
    comments_node = node.get("comments")
    if isinstance(comments_node, dict):
        comments = comments_node.get("items") or []
        profiles = comments_node.get("profiles") or []
    else:
        comments = comments_node or []
        profiles = node.get("profiles") or []
    group_id = pick_first(node, ["group_id", "GroupID", "groupId"])
    return {
        "post_id": str(pick_first(node, ["post_id", "PostID", "postId"]) or ""),
        "group_id": str(group_id) if group_id is not None else source_id,
        "comments": [c for c in comments if isinstance(c, dict)],
        "profiles": [p for p in profiles if isinstance(p, dict)],
    }


def parse_page(response: dict, source_id: str) -> dict:
    posts = deep_get(response, ["posts", "items"]) or []
    items = response.get("items") or []
    return {
        "posts": [parse_post(p) for p in posts if isinstance(p, dict)],
        "items": [parse_item(i, source_id) for i in items if isinstance(i, dict)],
        "total_count": to_int(deep_get(response, ["posts", "count"])),
    }


def build_profile_map(items: List[dict]) -> Dict[int, dict]:
    profiles = {}
    for item in items:
        for node in item.get("profiles", []):
            profile = parse_profile(node)
            profiles[profile["id"]] = profile
    return profiles


def resolve_profiles(comments: List[dict], profile_map: Dict[int, dict]) -> List[dict]:
    for comment in comments:
        comment["profile"] = profile_map.get(comment.get("from_id"))
    return comments


def page_records(page: dict, source_id: str, screen_name: str) -> dict:
    """Build the persistable posts, comments and profiles of one page.

    Posts without comments and comments with empty text are dropped. Profiles
    are attached from this page only.
    """
    posts = [post for post in page.get("posts", []) if post["comments"] > 0]
    profile_map = build_profile_map(page.get("items", []))

    comments = []
    for item in page.get("items", []):
        if not item.get("post_id"):
            continue
        for node in item.get("comments", []):
            if not node.get("text"):
                continue
            comments.append(parse_comment(node, item["post_id"], item["group_id"], screen_name))
    resolve_profiles(comments, profile_map)

    return {
        "posts": posts,
        "comments": comments,
        "profiles": list(profile_map.values()),
    }
