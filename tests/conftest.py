import sys

import pytest

from tests.fakes import fake_sounddevice

# Audio modules import sounddevice at import time; never reach real hardware.
sys.modules["sounddevice"] = fake_sounddevice


@pytest.fixture(autouse=True)
def _reset_fake_sounddevice():
    fake_sounddevice.reset()
    yield
    fake_sounddevice.reset()
