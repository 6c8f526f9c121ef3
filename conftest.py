"""
Pytest adapter for the script-style suites.

The suites call `runner.test(name, condition, msg)`; under pytest each call
becomes an assertion so a failing check fails its test function.
"""
import pytest


class AssertingRunner:
    def test(self, name: str, condition: bool, msg: str = ""):
        assert condition, f"{name}: {msg}"


@pytest.fixture
def runner():
    return AssertingRunner()


@pytest.fixture(autouse=True)
def _isolated_environment(monkeypatch, tmp_path):
    # No global config, no auto-confirmation, no colour codes in captured output
    monkeypatch.setenv('HOME', str(tmp_path))
    monkeypatch.delenv('PRDGATE_AUTO_CONFIRM', raising=False)
    monkeypatch.setenv('NO_COLOR', '1')
    yield
