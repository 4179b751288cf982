"""Shared pytest fixtures for the build script tests."""

from pathlib import Path

import pytest
import yaml


def _front_matter(**fields) -> str:
    data = {k: v for k, v in fields.items() if v is not None}
    return "---\n" + yaml.safe_dump(data, sort_keys=False) + "---\n"


@pytest.fixture
def content_root(tmp_path: Path) -> Path:
    """Empty content tree with a posts/ directory."""
    root = tmp_path / "src"
    (root / "posts").mkdir(parents=True)
    return root


@pytest.fixture
def write_post(content_root: Path):
    """Write a Markdown post under the content root and return its path."""

    def _write(rel: str, *, title=None, date=None, tags=None, body="Some text.\n", **extra) -> Path:
        path = content_root / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(_front_matter(title=title, date=date, tags=tags, **extra) + body, encoding="utf-8")
        return path

    return _write


@pytest.fixture
def site_config(tmp_path: Path, content_root: Path):
    """Write config.yml next to the content tree and return its path."""

    def _write(**overrides) -> Path:
        data = {
            "site_title": "Test Weblog",
            "site_description": "Posts for tests",
            "site_url": "https://example.com/",
            "content_root": "src",
            "output_dir": "_site",
        }
        data.update(overrides)
        path = tmp_path / "config.yml"
        path.write_text(yaml.safe_dump(data), encoding="utf-8")
        return path

    return _write
