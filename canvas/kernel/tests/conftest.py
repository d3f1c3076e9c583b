"""
Canvas kernel test configuration.

Shared fixtures: a deterministic id factory and small forests built by hand.
"""

import pytest

from canvas.kernel.engine import CanvasEngine
from canvas.kernel.tests.factories import block, make_id_factory
from canvas.kernel.tree import build_indices


@pytest.fixture
def ids():
    return make_id_factory()


@pytest.fixture
def page():
    """
    s1 (section)
      r1 (row)
        t1 (text)
        t2 (text)
      t3 (text)
    g1 (grid)
      [c1, None, c3]
    h1 (heading)
    """
    return [
        block("s1", "section", [
            block("r1", "row", [block("t1", content="one"), block("t2", content="two")]),
            block("t3", content="three"),
        ]),
        block("g1", "grid", [block("c1"), None, block("c3")]),
        block("h1", "heading", text="Title"),
    ]


@pytest.fixture
def page_indices(page):
    return build_indices(page)


@pytest.fixture
def engine():
    return CanvasEngine(id_factory=make_id_factory())


@pytest.fixture
def page_engine(page):
    return CanvasEngine(page, id_factory=make_id_factory("n"))
