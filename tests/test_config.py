"""Tests for config loading."""

import pytest

from build_site import DEFAULT_PASSTHROUGH, DEFAULT_POST_GLOBS, load_config


class TestLoadConfig:
    def test_missing_file_exits(self, tmp_path, capsys):
        with pytest.raises(SystemExit) as excinfo:
            load_config(tmp_path / "config.yml")
        assert excinfo.value.code == 1
        assert "Config file not found" in capsys.readouterr().err

    def test_defaults(self, tmp_path, monkeypatch):
        monkeypatch.delenv("BUILD_ENV", raising=False)
        path = tmp_path / "config.yml"
        path.write_text("", encoding="utf-8")

        cfg = load_config(path)
        assert cfg["site_title"] == "Weblog"
        assert cfg["site_url"] == ""
        assert cfg["content_root"] == (tmp_path / "src").resolve()
        assert cfg["output_dir"] == (tmp_path / "_site").resolve()
        assert cfg["post_globs"] == DEFAULT_POST_GLOBS
        assert cfg["passthrough"] == DEFAULT_PASSTHROUGH
        assert cfg["feed_filename"] == "feed.xml"
        assert cfg["site_data_filename"] == "site.json"
        assert cfg["git_dates"] is False

    def test_overrides(self, site_config, tmp_path):
        cfg = load_config(site_config(post_globs="notes/*.md", output_dir="public", git_dates=True))
        assert cfg["site_url"] == "https://example.com"
        assert cfg["post_globs"] == ["notes/*.md"]
        assert cfg["output_dir"] == (tmp_path / "public").resolve()
        assert cfg["git_dates"] is True

    def test_production_enables_git_dates(self, site_config, monkeypatch):
        monkeypatch.setenv("BUILD_ENV", "production")
        assert load_config(site_config(git_dates=False))["git_dates"] is True

    def test_invalid_passthrough_falls_back(self, site_config):
        cfg = load_config(site_config(passthrough=["assets"]))
        assert cfg["passthrough"] == DEFAULT_PASSTHROUGH
