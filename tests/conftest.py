from pathlib import Path

import pytest

from shellconf.config import ConfigRoot, get_config_root
from shellconf.models import IniSettings


@pytest.fixture
def config_root(tmp_path: Path) -> ConfigRoot:
    return get_config_root(tmp_path / "home", IniSettings())
