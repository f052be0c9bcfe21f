import pytest
from hypothesis import given, settings, strategies as st

from pageflow.adapters.memory import MemorySurfaceFactory
from pageflow.config import PageConfig
from pageflow.document import is_really_empty
from pageflow.pool import PagePool, PageState, get_visible_pages, should_expand
from pageflow.surface import SurfaceHandlers
from tests.helpers import make_paragraphs


def _assert_visible_prefix(pool: PagePool) -> None:
    flags = [p.is_visible for p in pool.pages]
    assert flags == sorted(flags, reverse=True)
    assert pool.visible_count == sum(flags)


def test_create_shows_only_first_page(pool, handlers) -> None:
    created = pool.create(5, handlers)
    assert len(pool) == 5
    assert pool.visible_count == 1
    assert created[0].is_visible and created[0].surface.editable
    assert not any(p.surface.editable for p in created[1:])
    assert all(p.is_preloaded for p in created)


def test_first_create_requires_handlers(pool) -> None:
    with pytest.raises(ValueError):
        pool.create(1)


def test_expands_ahead_of_frontier(pool, handlers) -> None:
    pool.create(5, handlers)
    for _ in range(2):
        pool.activate_next()
    assert not pool.expand_if_needed()
    pool.activate_next()
    assert pool.visible_count == 4
    assert pool.expand_if_needed()
    assert len(pool) == 10


def test_should_expand() -> None:
    assert should_expand(4, 5)
    assert not should_expand(3, 5)
    assert not should_expand(4, 10)
    assert should_expand(2, 3, PageConfig(expand_threshold=2))


def test_exhausted_pool_grows_synchronously(pool, handlers, caplog) -> None:
    pool.create(1, handlers)
    page = pool.activate_next()
    assert page.is_visible
    assert len(pool) == 6
    assert "exhausted" in caplog.text


def test_deactivate_resets_and_moves_to_tail(pool, handlers) -> None:
    pool.create(5, handlers)
    second = pool.activate_next()
    third = pool.activate_next()
    second.surface.set_document(make_paragraphs(3))
    second.has_overflow = True
    second.content_height = 1200.0
    second.pagination_count = 2
    second.state = PageState.OVERFLOWING
    before = second.generation

    pool.deactivate(second)

    assert pool.pages[-1] is second
    assert pool.visible_pages()[1] is third
    assert not second.is_visible and not second.surface.editable
    assert is_really_empty(second.surface.get_document())
    assert (second.has_overflow, second.content_height, second.pagination_count) == (False, 0.0, 0)
    assert second.state is PageState.STABLE
    assert second.generation > before
    _assert_visible_prefix(pool)


def test_reactivated_page_joins_end_of_visible_run(pool, handlers) -> None:
    pool.create(5, handlers)
    second = pool.activate_next()
    pool.activate_next()
    pool.deactivate(second)
    again = pool.activate_next()
    assert pool.visible_pages()[-1] is again
    assert pool.visible_count == 3


def test_visible_pages_limit(pool, handlers) -> None:
    pool.create(5, handlers)
    pool.activate_next()
    pool.activate_next()
    assert len(get_visible_pages(pool)) == 3
    assert len(get_visible_pages(pool, 2)) == 2


def test_lookup_helpers(pool, handlers) -> None:
    first, *_ = pool.create(3, handlers)
    assert pool.get(first.id) is first
    assert pool.get("missing") is None
    assert pool.find_by_surface(first.surface) is first


def test_teardown_destroys_surfaces(pool, handlers) -> None:
    pages = pool.create(3, handlers)
    pool.teardown()
    assert len(pool) == 0
    assert all(p.surface.destroyed for p in pages)


_ops = st.lists(st.tuples(st.booleans(), st.integers(min_value=0, max_value=30)), max_size=40)


@given(_ops)
@settings(deadline=None)
def test_visible_pages_always_form_prefix(ops) -> None:
    handlers = SurfaceHandlers(lambda _s: None, lambda _s: None)
    pool = PagePool(MemorySurfaceFactory())
    pool.create(5, handlers)
    for activate, pick in ops:
        visible = pool.visible_pages()
        if activate:
            pool.activate_next()
        elif len(visible) > 1:
            pool.deactivate(visible[pick % len(visible)])
        pool.expand_if_needed()
        _assert_visible_prefix(pool)
