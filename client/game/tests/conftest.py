import pytest

from game.targets import TargetField


@pytest.fixture
def target_field():
    return TargetField()
