from pathlib import Path
import sys

import pytest

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from checkpoint_ledger import COUNTER_FILES, CheckpointLedger
from record_store import FileRecordStore
from vk_records import parse_page


def make_response(posts, items, total):
    return {"posts": {"count": total, "items": posts}, "items": items}


def make_post(post_id, comments=1):
    return {
        "id": post_id,
        "from_id": -1,
        "owner_id": -1,
        "date": 1600000000 + post_id,
        "post_type": "post",
        "text": f"post {post_id}",
        "likes": {"count": 2},
        "reposts": {"count": 1},
        "views": {"count": 30},
        "comments": {"count": comments},
    }


def make_item(post_id, comments, profiles, group_id="-1"):
    return {
        "post_id": str(post_id),
        "group_id": group_id,
        "comments": {"count": len(comments), "items": comments, "profiles": profiles},
    }


def disk_counts(store):
    """Count the post, comment and profile records present on disk."""
    counts = {kind: 0 for kind in COUNTER_FILES}
    for source_id, is_dir in store.list_dir("comments"):
        if not is_dir:
            continue
        for post_id, post_is_dir in store.list_dir(f"comments/{source_id}"):
            if not post_is_dir:
                continue
            for name, _ in store.list_dir(f"comments/{source_id}/{post_id}"):
                counts["posts" if name == "post.json" else "comments"] += 1
    counts["profiles"] = len(store.list_dir("profiles"))
    return counts


def flushed_counts(store):
    return {kind: int(store.get_text(filename) or 0) for kind, filename in COUNTER_FILES.items()}


class FakeClient:
    """Serves scripted pages or exceptions, one per fetch call."""

    def __init__(self, script=None, groups=None):
        self.script = dict(script or {})
        self.groups = groups or []
        self.calls = []
        self.resolve_calls = []

    def resolve_groups(self, names):
        self.resolve_calls.append(list(names))
        return list(self.groups)

    def fetch_page(self, source_id, offset, page_size):
        self.calls.append((source_id, offset, page_size))
        steps = self.script.get(source_id)
        if not steps:
            raise AssertionError(f"unexpected fetch for {source_id} at offset {offset}")
        step = steps.pop(0)
        if isinstance(step, Exception):
            raise step
        return parse_page(step, source_id)


@pytest.fixture
def store(tmp_path):
    return FileRecordStore(tmp_path / "crawler_data")


@pytest.fixture
def ledger(store):
    return CheckpointLedger(store)


@pytest.fixture
def fast_settings():
    return {
        "page_size": 20,
        "rate_limit_cooldown": 0,
        "transient_retry_delay": 0,
        "transient_offset_step": 10,
        "transient_policy": "retry",
        "max_transient_retries": 0,
        "flush_interval": 0,
    }
