from conftest import make_item, make_post, make_response
from vk_records import (
    birth_year,
    build_post_url,
    build_profile_map,
    page_records,
    parse_comment,
    parse_page,
    parse_post,
    parse_profile,
    resolve_profiles,
)


def test_birth_year_parses_full_date_only():
    assert birth_year("1.1.1990") == 1990
    assert birth_year("12.11") == 0
    assert birth_year("") == 0
    assert birth_year(None) == 0
    assert birth_year("1.1.abc") == 0


def test_parse_post_flattens_engagement_counts():
    post = parse_post(make_post(7, comments=3))
    assert post["id"] == 7
    assert post["likes"] == 2
    assert post["reposts"] == 1
    assert post["views"] == 30
    assert post["comments"] == 3


def test_parse_profile_derives_byear_and_places():
    profile = parse_profile({
        "id": 7,
        "first_name": "Ivan",
        "last_name": "Petrov",
        "bdate": "3.4.1985",
        "city": {"id": 1, "title": "Moscow"},
    })
    assert profile["byear"] == 1985
    assert profile["city"] == {"id": 1, "title": "Moscow"}
    assert profile["country"] == {"id": 0, "title": ""}


def test_build_post_url_uses_absolute_group_id():
    assert build_post_url("-123", "45") == "https://vk.com/public123?w=wall-123_45"


def test_parse_comment_enriches_with_group_context():
    comment = parse_comment({"id": 10, "from_id": 7, "text": "hi"}, "1", "-5", "somegroup")
    assert comment["post_id"] == "1"
    assert comment["group_id"] == "-5"
    assert comment["group_screen_name"] == "somegroup"
    assert comment["post_url"] == "https://vk.com/public5?w=wall-5_1"
    assert comment["profile"] is None


def test_parse_page_accepts_flat_item_layout():
    response = make_response(
        [make_post(1, comments=5)],
        [{"postId": "1", "comments": [{"id": 10, "from_id": 7, "text": "hi"}], "profiles": [{"id": 7}]}],
        5,
    )
    page = parse_page(response, "-1")
    assert page["total_count"] == 5
    assert page["items"][0]["post_id"] == "1"
    assert page["items"][0]["group_id"] == "-1"
    assert len(page["items"][0]["comments"]) == 1
    assert len(page["items"][0]["profiles"]) == 1


def test_resolve_profiles_leaves_unknown_authors_unresolved():
    items = [{"profiles": [{"id": 7, "bdate": "1.1.1990"}]}]
    comments = [{"from_id": 7}, {"from_id": 8}]
    resolve_profiles(comments, build_profile_map(items))
    assert comments[0]["profile"]["byear"] == 1990
    assert comments[1]["profile"] is None


def test_page_records_filters_posts_and_empty_comments():
    response = make_response(
        [make_post(1, comments=2), make_post(2, comments=0)],
        [make_item(1, [
            {"id": 10, "from_id": 7, "text": "hi"},
            {"id": 11, "from_id": 7, "text": ""},
        ], [{"id": 7, "bdate": "1.1.1990"}])],
        2,
    )
    records = page_records(parse_page(response, "-1"), "-1", "grp")
    assert [post["id"] for post in records["posts"]] == [1]
    assert [comment["id"] for comment in records["comments"]] == [10]
    assert records["comments"][0]["profile"]["id"] == 7
    assert [profile["id"] for profile in records["profiles"]] == [7]


def test_profiles_from_another_page_are_not_used():
    first = parse_page(make_response(
        [make_post(1)],
        [make_item(1, [{"id": 10, "from_id": 7, "text": "a"}], [{"id": 7}])],
        2,
    ), "-1")
    second = parse_page(make_response(
        [make_post(2)],
        [make_item(2, [{"id": 20, "from_id": 7, "text": "b"}], [])],
        2,
    ), "-1")

    assert page_records(first, "-1", "grp")["comments"][0]["profile"]["id"] == 7
    assert page_records(second, "-1", "grp")["comments"][0]["profile"] is None
