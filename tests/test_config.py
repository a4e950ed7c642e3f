import pytest

from cian_crawler.config import load_settings
from cian_crawler.errors import ConfigError
from cian_crawler.models import RawFilter, TermsFilter

CONFIG = """
cian:
  search_type: flatsale
  max_cell_size_meters: 800
  max_workers_collect_ids: 8
  search_query:
    region:
      type: terms
      value: [1]
    price:
      type: range
      value:
        gte: 1000000
    geo:
      type: geo
      value:
        - type: polygon
captcha:
  max_wait: 120
"""


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    # load_dotenv writes to os.environ; setenv first so teardown restores it.
    for name in ("ANTICAPTCHA_KEY", "PG_DSN"):
        monkeypatch.setenv(name, "")
        monkeypatch.delenv(name)


def test_load_settings_reads_yaml(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(CONFIG, encoding="utf-8")

    settings = load_settings(path, env_file=tmp_path / ".env")

    assert settings.cian.max_cell_size_meters == 800
    assert settings.cian.max_workers_collect_ids == 8
    assert settings.cian.max_workers_collect_offers == 5
    assert settings.captcha.max_wait == 120
    assert isinstance(settings.cian.search_query["region"], TermsFilter)
    assert isinstance(settings.cian.search_query["geo"], RawFilter)
    query = settings.cian.search().to_json_query()
    assert query["_type"] == "flatsale"
    assert query["price"] == {"type": "range", "value": {"gte": 1000000}}


def test_secrets_come_from_env_file(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(CONFIG, encoding="utf-8")
    env_file = tmp_path / ".env"
    env_file.write_text("ANTICAPTCHA_KEY=secret\nPG_DSN=postgresql://u@localhost/db\n", encoding="utf-8")

    settings = load_settings(path, env_file=env_file)

    assert settings.captcha.api_key == "secret"
    assert settings.database.dsn == "postgresql://u@localhost/db"


def test_explicit_config_values_win_over_env(tmp_path, monkeypatch):
    monkeypatch.setenv("ANTICAPTCHA_KEY", "from-env")
    path = tmp_path / "config.yaml"
    path.write_text("captcha:\n  api_key: from-file\n", encoding="utf-8")

    assert load_settings(path, env_file=tmp_path / ".env").captcha.api_key == "from-file"


def test_empty_config_uses_defaults(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("", encoding="utf-8")

    settings = load_settings(path, env_file=tmp_path / ".env")

    assert settings.cian.search_type == "flatsale"
    assert settings.cian.max_cell_size_meters == 1000
    assert settings.http.timeout == 20


@pytest.mark.parametrize(
    "text",
    [
        "cian: [1, 2",
        "- just\n- a list\n",
        "cian:\n  max_workers_collect_ids: 0\n",
        "cian:\n  search_query:\n    room: 3\n",
    ],
)
def test_invalid_config_raises_config_error(tmp_path, text):
    path = tmp_path / "config.yaml"
    path.write_text(text, encoding="utf-8")
    with pytest.raises(ConfigError):
        load_settings(path, env_file=tmp_path / ".env")


def test_missing_config_file_raises_config_error(tmp_path):
    with pytest.raises(ConfigError):
        load_settings(tmp_path / "missing.yaml", env_file=tmp_path / ".env")
