import pytest

from helpers import make_monitor, make_runtime


@pytest.fixture
def monitor():
    return make_monitor()


@pytest.fixture
def runtime(tmp_path):
    return make_runtime(tmp_path)
