import asyncio
import inspect
import sys
from pathlib import Path

import pytest

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from extengine.app.config import initConfig, resetConfig
from extengine.app.context import PROCESS_REGISTRY



def pytest_addoption(parser: pytest.Parser) -> None:
    parser.addini(
        "asyncio_mode",
        "Execution mode for @pytest.mark.asyncio tests (only 'strict' is supported without pytest-asyncio).",
        default="strict",
    )



def pytest_configure(config: pytest.Config) -> None:
    if sys.flags.optimize:
        raise RuntimeError("Assertions are disabled (optimize > 0)")

    mode = config.getini("asyncio_mode")
    if mode != "strict":
        raise pytest.UsageError(
            "tests/conftest.py only supports asyncio_mode='strict' without pytest-asyncio installed"
        )

    config.addinivalue_line("markers", "asyncio: mark a test to run inside an event loop")



@pytest.hookimpl(tryfirst=True)
def pytest_pyfunc_call(pyfuncitem: pytest.Function) -> bool | None:
    """Runs `@pytest.mark.asyncio` coroutine tests on a fresh event loop."""
    if pyfuncitem.get_closest_marker("asyncio") is None:
        return None
    testFn = pyfuncitem.obj
    if not inspect.iscoroutinefunction(testFn):
        return None
    argNames = pyfuncitem._fixtureinfo.argnames
    kwargs = {name: pyfuncitem.funcargs[name] for name in argNames}
    asyncio.run(testFn(**kwargs))
    return True



@pytest.fixture(autouse=True)
def _isolatedProcessState(tmp_path_factory: pytest.TempPathFactory):
    """Each test gets defaults-only config and no registered engine."""
    resetConfig()
    initConfig(baseDir=tmp_path_factory.mktemp("config"), force=True)
    PROCESS_REGISTRY.unregister("engine")
    yield
    PROCESS_REGISTRY.unregister("engine")
    resetConfig()
