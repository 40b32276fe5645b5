import pytest
from pydantic import ValidationError

from boothbeacon.config import Settings


def test_default_crawl_wait_fits_inside_run_deadline():
    settings = Settings(_env_file=None)
    assert settings.crawl_max_wait < settings.source_run_deadline


def test_crawl_wait_longer_than_deadline_is_rejected():
    with pytest.raises(ValidationError, match="crawl_max_wait"):
        Settings(_env_file=None, crawl_max_wait=240, source_run_deadline=130)
