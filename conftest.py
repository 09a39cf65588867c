import pytest

from aleph_engine.config import EngineConfig


@pytest.fixture
def engine_config(tmp_path):
    """Config pointing storage at a throwaway directory, no asset or speech backends."""
    return EngineConfig(data_dir=tmp_path / "data")
