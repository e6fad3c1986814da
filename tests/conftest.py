import pytest

from mtb_agent.config import AgentContext, Config
from mtb_agent.models import VersionInfo

from fakes import BASE_URL


@pytest.fixture
def ctx(tmp_path):
    config = Config()
    config.validate()
    return AgentContext(
        config=config,
        version=VersionInfo(version_string="0.1.2", version_url=BASE_URL),
        computer_id="PC-01",
        program_dir=tmp_path / "files",
        args=[],
    )
