"""Tests for settings parsing and .env persistence."""

from pathlib import Path

from homedash.config import Settings, _env_assignment, _env_quote, load_config, save_config


class TestStoreModeParsing:
    def test_default_is_local(self, env_file: Path, monkeypatch):
        monkeypatch.delenv("HOMEDASH_STORE_MODE", raising=False)
        assert Settings().store_mode == "local"

    def test_case_and_whitespace_normalized(self):
        assert Settings(store_mode=" Firebase ").store_mode == "firebase"

    def test_unknown_falls_back_to_local(self):
        assert Settings(store_mode="redis").store_mode == "local"


class TestIsConfigured:
    def test_local_always_configured(self):
        assert Settings(store_mode="local").is_configured() is True

    def test_firebase_needs_everything(self):
        s = Settings(
            store_mode="firebase",
            firebase_api_key="key",
            firebase_database_url="https://demo.firebaseio.com",
            firebase_project_id="demo",
        )
        assert s.is_configured() is False

    def test_firebase_with_base64_credentials(self):
        s = Settings(
            store_mode="firebase",
            firebase_api_key="key",
            firebase_database_url="https://demo.firebaseio.com",
            firebase_project_id="demo",
            firebase_credentials_base64="e30=",
        )
        assert s.is_configured() is True


class TestEnvLines:
    def test_parse_plain(self):
        assert _env_assignment("HOMEDASH_PORT=8080") == ("HOMEDASH_PORT", "8080")

    def test_parse_quoted(self):
        assert _env_assignment('KEY="a \\"b\\""') == ("KEY", 'a "b"')

    def test_skip_comments_and_blanks(self):
        assert _env_assignment("# comment") is None
        assert _env_assignment("   ") is None

    def test_format_quotes_spaces(self):
        assert _env_quote("two words") == '"two words"'
        assert _env_quote("plain") == "plain"


class TestSaveConfig:
    def test_writes_prefixed_keys(self, env_file: Path):
        save_config({"store_mode": "firebase", "firebase_project_id": "demo"})
        text = env_file.read_text()
        assert "HOMEDASH_STORE_MODE=firebase" in text
        assert "HOMEDASH_FIREBASE_PROJECT_ID=demo" in text

    def test_ignores_unknown_fields(self, env_file: Path):
        save_config({"not_a_field": "x", "port": 9000})
        text = env_file.read_text()
        assert "NOT_A_FIELD" not in text
        assert "HOMEDASH_PORT=9000" in text

    def test_preserves_other_lines(self, env_file: Path):
        env_file.write_text("OTHER_VAR=keep\nHOMEDASH_PORT=8000\n")
        save_config({"port": 9001})
        text = env_file.read_text()
        assert "OTHER_VAR=keep" in text
        assert "HOMEDASH_PORT=9001" in text
        assert "HOMEDASH_PORT=8000" not in text

    def test_load_reads_saved_values(self, env_file: Path, monkeypatch):
        monkeypatch.delenv("HOMEDASH_ONLINE_THRESHOLD_SECONDS", raising=False)
        save_config({"online_threshold_seconds": 300})
        assert load_config().online_threshold_seconds == 300

    def test_quotes_values_with_spaces(self, env_file: Path):
        save_config({"firebase_credentials_path": "/srv/my keys/sa.json"})
        assert 'HOMEDASH_FIREBASE_CREDENTIALS_PATH="/srv/my keys/sa.json"' in env_file.read_text()
