"""
Shared pytest fixtures for the Visual Clutter tests.
"""
import pytest

from tests.helpers import SCENARIO_LABELS, SCENARIO_SCORES, FakeDevice, FakeModel
from visual_clutter.core.events import Tensor


@pytest.fixture
def scenario_tensor():
    return Tensor(SCENARIO_SCORES)


@pytest.fixture
def scenario_labels():
    return list(SCENARIO_LABELS)


@pytest.fixture
def fake_device():
    return FakeDevice()


@pytest.fixture
def fake_model():
    return FakeModel()
