import pytest

from lifehub.domain import NotFoundError, ValidationError, Widget, WidgetType


def page(public_id="abc", is_public=True, **extra):
    data = {"id": "p1", "title": "Recipes", "content": "# Bread", "isPublic": is_public, "publicId": public_id}
    data.update(extra)
    return data


def save_wiki(widgets, owner_id, widget_id, pages, nested=True, widget_type=WidgetType.WIKI):
    content = {"wiki": {"pages": pages, "activePageId": "p1"}} if nested else {"pages": pages}
    widgets.upsert(owner_id, Widget(id=widget_id, type=widget_type, title="Wiki", content=content))


def test_resolves_public_page(widgets, resolver, alice):
    save_wiki(widgets, alice.id, "wiki", [page(author="alice", date="2026-01-01")])

    found = resolver.resolve("abc")

    assert found.id == "p1"
    assert found.title == "Recipes"
    assert found.content == "# Bread"
    assert found.is_public is True
    assert found.public_id == "abc"
    assert found.author == "alice"


def test_resolves_pages_stored_at_top_level(widgets, resolver, alice):
    save_wiki(widgets, alice.id, "wiki", [page()], nested=False)

    assert resolver.resolve("abc").public_id == "abc"


def test_private_page_is_not_found(widgets, resolver, alice):
    save_wiki(widgets, alice.id, "wiki", [page(is_public=False)])

    with pytest.raises(NotFoundError):
        resolver.resolve("abc")


def test_unknown_public_id_is_not_found(widgets, resolver, alice):
    save_wiki(widgets, alice.id, "wiki", [page()])

    with pytest.raises(NotFoundError):
        resolver.resolve("xyz")


def test_substring_match_is_not_enough(widgets, resolver, alice):
    save_wiki(widgets, alice.id, "wiki", [page(public_id="abcd"), page(public_id="zz", content="abc")])

    with pytest.raises(NotFoundError):
        resolver.resolve("abc")


def test_like_wildcards_are_literal(widgets, resolver, alice):
    save_wiki(widgets, alice.id, "wiki", [page(public_id="a-c")])

    with pytest.raises(NotFoundError):
        resolver.resolve("a_c")
    with pytest.raises(NotFoundError):
        resolver.resolve("%")


def test_ids_that_need_json_escaping_are_still_found(widgets, resolver, alice):
    save_wiki(widgets, alice.id, "wiki", [page(public_id='quote"d\\id')])

    assert resolver.resolve('quote"d\\id').public_id == 'quote"d\\id'


def test_only_wiki_widgets_are_searched(widgets, resolver, alice):
    save_wiki(widgets, alice.id, "note", [page()], widget_type=WidgetType.NOTE)

    with pytest.raises(NotFoundError):
        resolver.resolve("abc")


def test_malformed_rows_are_skipped(widgets, resolver, db, alice):
    save_wiki(widgets, alice.id, "broken", [page()])
    save_wiki(widgets, alice.id, "list-content", [page()])
    save_wiki(widgets, alice.id, "good", [page(title="Good copy")])
    with db.connect() as conn:
        conn.execute("UPDATE widgets SET content = ? WHERE id = ?", ('{"abc": [', "broken"))
        conn.execute("UPDATE widgets SET content = ? WHERE id = ?", ('["abc"]', "list-content"))
        conn.commit()

    assert resolver.resolve("abc").title == "Good copy"


def test_first_match_in_page_order_wins(widgets, resolver, alice):
    save_wiki(widgets, alice.id, "wiki", [
        page(is_public=False, title="Private"),
        page(title="First public"),
        page(title="Second public"),
    ])

    assert resolver.resolve("abc").title == "First public"


def test_resolves_across_owners_and_inactive_state(widgets, resolver, alice, bob):
    save_wiki(widgets, alice.id, "alice-wiki", [page(public_id="alice-page")])
    save_wiki(widgets, bob.id, "bob-wiki", [page(public_id="bob-page")])

    assert resolver.resolve("alice-page").public_id == "alice-page"
    assert resolver.resolve("bob-page").public_id == "bob-page"

    widgets.soft_delete(alice.id, "alice-wiki")
    assert resolver.resolve("alice-page").public_id == "alice-page"


def test_empty_public_id_is_rejected(resolver):
    with pytest.raises(ValidationError):
        resolver.resolve("")


def test_page_dict_omits_empty_optional_fields(widgets, resolver, alice):
    save_wiki(widgets, alice.id, "wiki", [page()])

    assert resolver.resolve("abc").to_dict() == {
        "id": "p1",
        "title": "Recipes",
        "content": "# Bread",
        "isPublic": True,
        "publicId": "abc",
    }


def test_page_with_non_text_fields_is_not_found(widgets, resolver, alice):
    save_wiki(widgets, alice.id, "wiki", [page(title=5, content={"x": 1})])

    with pytest.raises(NotFoundError):
        resolver.resolve("abc")


def test_page_with_non_text_fields_is_skipped(widgets, resolver, alice):
    save_wiki(widgets, alice.id, "broken", [page(author=["alice"])])
    save_wiki(widgets, alice.id, "good", [page(title=None, date=20260101), page(title="Good copy")])

    found = resolver.resolve("abc")

    assert found.title == "Good copy"
    assert found.author is None
