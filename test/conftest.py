import pytest

from hypr_workspaces import model


@pytest.fixture(autouse=True)
def _reset_bad_format_cache():
    # model._bad_formats is module-level log-dedup state; isolate it per test.
    model._bad_formats.clear()
    yield
    model._bad_formats.clear()
