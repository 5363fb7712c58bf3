"""Config loading and profile overlay tests."""

from crowdcast.config import get_settings, load_config


def _write(tmp_path):
    (tmp_path / "default.toml").write_text(
        '[storage]\ndb_path = "data/a.duckdb"\n[monitor]\npoll_interval_sec = 300\nrate_limit_backoff_sec = 900\n'
    )
    (tmp_path / "dev.toml").write_text("[monitor]\npoll_interval_sec = 60\n")


def test_profile_overlays_default(tmp_path):
    _write(tmp_path)
    s = get_settings("dev", tmp_path)
    assert s.poll_interval_sec == 60
    assert s.rate_limit_backoff_sec == 900
    assert s.db_path == "data/a.duckdb"
    assert get_settings(None, tmp_path).poll_interval_sec == 300


def test_missing_config_dir_gives_defaults(tmp_path):
    assert load_config(None, tmp_path) == {}
    s = get_settings(None, tmp_path)
    assert s.poll_interval_sec == 300
    assert s.monitor_enabled is True


def test_secrets_fall_back_to_env(tmp_path, monkeypatch):
    monkeypatch.setenv("CROWDCAST_X_CLIENT_ID", "cid")
    monkeypatch.setenv("CROWDCAST_AI_API_KEY", "sk-test")
    s = get_settings(None, tmp_path)
    assert s.x_client_id == "cid"
    assert s.ai_api_key == "sk-test"


def test_default_redirect_is_frontend_page_not_an_api_route(tmp_path):
    from crowdcast.api.main import app

    s = get_settings(None, tmp_path)
    assert s.x_redirect_uri == "http://localhost:5173/x/callback"
    api_paths = {getattr(r, "path", None) for r in app.routes}
    assert "/x/callback" not in api_paths
    assert "/auth/x/complete" in api_paths
