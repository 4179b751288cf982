#!/usr/bin/env python3
import os
import re
import sys
import html
import json
import time
import shutil
import subprocess
from pathlib import Path
from datetime import datetime, date, timezone
from email.utils import formatdate

import markdown       # pip install markdown
import frontmatter    # pip install python-frontmatter
import yaml           # pip install pyyaml
from bs4 import BeautifulSoup  # pip install beautifulsoup4
from markdown.extensions.toc import TocExtension

BASE_DIR = Path(__file__).parent
CONFIG_FILE = BASE_DIR / "config.yml"

LATEST_COUNT = 5
PERSONAL_TAG = "personal"
EXCERPT_SEPARATOR = "</p>"
POST_LAYOUT = "post"

DEFAULT_POST_GLOBS = ["posts/*.md", "posts/*/*.md"]
DEFAULT_PASSTHROUGH = {
    "assets": "assets",
    "CNAME": "CNAME",
    "favicon.ico": "favicon.ico",
}
DEFAULT_MEDIA_GLOBS = [
    "posts/**/*.png",
    "posts/**/*.jpg",
    "posts/**/*.jpeg",
    "posts/**/*.gif",
    "posts/**/*.svg",
    "posts/**/*.webp",
    "posts/**/*.mp3",
    "posts/**/*.ogg",
    "posts/**/*.vtt",
]


# -----------------------
# Config
# -----------------------

def get_config_path_from_args() -> Path:
    """
    Determine which config file to use.

    - If a path is passed as first argument, use that.
    - Otherwise, assume config.yml next to this script.
    """
    if len(sys.argv) > 1:
        return Path(sys.argv[1]).resolve()
    return CONFIG_FILE.resolve()


def _as_list(value, default):
    # a single glob may be given as a plain string
    if value is None:
        return list(default)
    if isinstance(value, str):
        return [value]
    return [str(x) for x in value]


def load_config(config_path: Path) -> dict:
    """Load YAML config, apply defaults and resolve paths against its directory."""
    if not config_path.exists():
        print(f"ERROR: Config file not found: {config_path}", file=sys.stderr)
        sys.exit(1)

    data = yaml.safe_load(config_path.read_text(encoding="utf-8")) or {}
    root = config_path.parent

    passthrough = data.get("passthrough")
    if not isinstance(passthrough, dict):
        passthrough = dict(DEFAULT_PASSTHROUGH)

    git_dates = bool(data.get("git_dates", False))
    if os.environ.get("BUILD_ENV") == "production":
        git_dates = True

    cfg = {
        "site_title": data.get("site_title", "Weblog"),
        "site_description": data.get("site_description", ""),
        "site_url": (data.get("site_url") or "").rstrip("/"),
        "content_root": (root / data.get("content_root", "src")).resolve(),
        "output_dir": (root / data.get("output_dir", "_site")).resolve(),
        "post_globs": _as_list(data.get("post_globs"), DEFAULT_POST_GLOBS),
        "media_globs": _as_list(data.get("media_globs"), DEFAULT_MEDIA_GLOBS),
        "passthrough": {str(k): str(v) for k, v in passthrough.items()},
        "feed_filename": data.get("feed_filename", "feed.xml"),
        "site_data_filename": data.get("site_data_filename", "site.json"),
        "git_dates": git_dates,
    }
    return cfg


# -----------------------
# Front matter, dates and rendering
# -----------------------

def parse_front_matter(text: str):
    """
    Split a Markdown document into (front_matter, body).

    Documents without a front matter block return ({}, text) with the
    surrounding whitespace stripped. Unreadable YAML is reported and the
    whole document is kept as the body.
    """
    try:
        post = frontmatter.loads(text)
    except (yaml.YAMLError, ValueError) as exc:
        print(f"WARNING: Invalid front matter ignored: {exc}", file=sys.stderr)
        return {}, text

    # a block that is not a mapping leaves the metadata empty
    return dict(post.metadata), post.content


def normalize_tags(value):
    """Front matter tags as a list of strings, or None when absent."""
    if value is None:
        return None
    if isinstance(value, (list, tuple, set)):
        return [str(t) for t in value]
    return [str(value)]


def to_datetime(value):
    """Coerce a front matter date (date, datetime or ISO string) to an aware UTC datetime."""
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, date):
        dt = datetime.combine(value, datetime.min.time())
    elif isinstance(value, str):
        try:
            dt = datetime.fromisoformat(value.strip())
        except ValueError:
            return None
    else:
        return None

    return as_utc(dt)


def as_utc(dt):
    """Naive datetimes are taken to be UTC already."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def git_created_date(path: Path):
    """Author time of the commit that added `path`, or None if git can't tell."""
    try:
        result = subprocess.run(
            ["git", "log", "--diff-filter=A", "--follow", "--format=%at", "--", path.name],
            cwd=path.parent,
            capture_output=True,
            text=True,
            check=True,
        )
    except (OSError, subprocess.CalledProcessError) as exc:
        print(f"WARNING: git date unavailable for {path}: {exc}", file=sys.stderr)
        return None

    stamps = result.stdout.split()
    if not stamps:
        print(f"WARNING: {path} is not tracked by git, keeping its date", file=sys.stderr)
        return None
    # oldest commit comes last
    return datetime.fromtimestamp(int(stamps[-1]), tz=timezone.utc)


def readable_date(dt) -> str:
    """Human date like 'January 2, 2025'."""
    return f"{dt:%B} {dt.day}, {dt.year}"


def rfc822_date(dt) -> str:
    return formatdate(as_utc(dt).timestamp())


def slugify(text: str) -> str:
    """
    Convert a title like 'Outdoor Trips' into a URL-friendly slug: 'outdoor-trips'.
    """
    s = text.strip().lower()
    s = re.sub(r"[\s_]+", "-", s)
    s = re.sub(r"[^a-z0-9-]", "", s)
    s = re.sub(r"-{2,}", "-", s).strip("-")
    return s or "post"


def _heading_slug(value: str, separator: str) -> str:
    return slugify(value).replace("-", separator)


def mark_code_blocks(html_fragment: str) -> str:
    """
    Tag every <pre> block as highlighted code and make it focusable,
    so the copy buttons can find it.
    """
    soup = BeautifulSoup(html_fragment, "html.parser")

    for pre in soup.find_all("pre"):
        classes = pre.get("class", [])
        if "highlight" not in classes:
            pre["class"] = classes + ["highlight"]
        pre["tabindex"] = "0"

    return str(soup)


def render_markdown(text: str) -> str:
    """Markdown -> HTML with heading anchors (h1-h3) and marked code blocks."""
    raw_html = markdown.markdown(
        text,
        extensions=[
            "fenced_code",
            "tables",
            TocExtension(
                permalink="#",
                permalink_class="header-anchor",
                permalink_leading=True,
                toc_depth="1-3",
                slugify=_heading_slug,
            ),
        ],
    )
    return mark_code_blocks(raw_html)


def excerpt(content) -> str:
    """
    The rendered HTML up to and including the first </p>, or "" if there is none.

    This is a plain substring search: a "</p>" inside an attribute or a
    nested element ends the excerpt just the same.
    """
    if not content:
        return ""
    position = content.find(EXCERPT_SEPARATOR)
    if position < 0:
        return ""
    return content[:position + len(EXCERPT_SEPARATOR)]


# -----------------------
# Collections
# -----------------------

def post_url(input_path: str) -> str:
    """posts/foo.md -> /posts/foo/, posts/foo/index.md -> /posts/foo/"""
    parts = input_path.split("/")
    stem = parts[-1].rsplit(".", 1)[0]
    if stem == "index":
        parts = parts[:-1]
    else:
        parts[-1] = stem
    parts = [slugify(p) for p in parts]
    if not parts:
        return "/"
    return "/" + "/".join(parts) + "/"


def load_post(path: Path, content_root: Path, *, git_dates: bool = False) -> dict:
    """Read one Markdown post into an entry dict."""
    data, body = parse_front_matter(path.read_text(encoding="utf-8"))
    input_path = path.relative_to(content_root).as_posix()

    dt = None
    if git_dates:
        dt = git_created_date(path)
    if dt is None and "date" in data:
        dt = to_datetime(data["date"])
        if dt is None:
            print(f"WARNING: Unreadable date in {path}, using file time", file=sys.stderr)
    if dt is None:
        dt = datetime.fromtimestamp(path.stat().st_mtime, tz=timezone.utc)

    return {
        "source_file": path,
        "input_path": input_path,
        "url": data.get("permalink") or post_url(input_path),
        "title": str(data.get("title") or path.stem),
        "date": dt,
        "tags": normalize_tags(data.get("tags")),
        "layout": data.get("layout"),
        "data": data,
        "content_md": body,
        "content_html": render_markdown(body),
    }


def collect_posts(content_root: Path, patterns=None, *, git_dates: bool = False) -> list:
    """
    Collect every post matched by `patterns` under `content_root`,
    sorted oldest first, each one assigned the post layout.

    A file matched by several patterns is collected once. Posts with the
    same date keep the order in which they were found.
    """
    if patterns is None:
        patterns = DEFAULT_POST_GLOBS
    if not content_root.is_dir():
        return []

    seen = set()
    posts = []
    for pattern in patterns:
        for path in sorted(content_root.glob(pattern)):
            if not path.is_file() or path in seen:
                continue
            seen.add(path)
            posts.append(load_post(path, content_root, git_dates=git_dates))

    posts.sort(key=lambda p: p["date"])

    for post in posts:
        post["layout"] = POST_LAYOUT
        post["data"]["layout"] = POST_LAYOUT

    return posts


def without_personal(posts: list) -> list:
    """Posts not tagged 'personal'. Posts without tags are kept."""
    return [p for p in posts if PERSONAL_TAG not in (p.get("tags") or [])]


def latest_posts(posts: list) -> list:
    """The newest posts, newest first."""
    return list(reversed(posts))[:LATEST_COUNT]


def get_tags(posts: list) -> list:
    """Every distinct tag in the collection, sorted."""
    tag_set = set()
    for post in posts:
        tag_set.update(post.get("tags") or [])
    return sorted(tag_set)


def build_collections(cfg: dict) -> dict:
    """
    The collections the templates consume. Each one scans the content
    root on its own, so every post is read, rendered (and dated from git)
    once per collection. The posts are not shared between collections.
    """
    root = cfg["content_root"]
    globs = cfg["post_globs"]
    git_dates = cfg["git_dates"]

    return {
        "posts": collect_posts(root, globs, git_dates=git_dates),
        "non_personal": without_personal(collect_posts(root, globs, git_dates=git_dates)),
        "latest": latest_posts(collect_posts(root, globs, git_dates=git_dates)),
    }


# -----------------------
# Passthrough copy
# -----------------------

def copy_passthrough(content_root: Path, output_dir: Path, mapping: dict):
    """Copy static files and directories to their fixed output paths."""
    for src_rel, dest_rel in mapping.items():
        src = content_root / src_rel
        dest = output_dir / dest_rel.lstrip("/")
        if not src.exists():
            print(f"WARNING: Passthrough source not found at {src}", file=sys.stderr)
            continue
        if src.is_dir():
            shutil.copytree(src, dest, dirs_exist_ok=True)
        else:
            dest.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(src, dest)
        print(f"Copied {src_rel} to {dest}")


def copy_media(content_root: Path, output_dir: Path, patterns: list) -> int:
    """Copy images, audio and subtitles next to their posts, keeping relative paths."""
    copied = 0
    seen = set()
    for pattern in patterns:
        for src in sorted(content_root.glob(pattern)):
            if not src.is_file() or src in seen:
                continue
            seen.add(src)
            dest = output_dir / src.relative_to(content_root)
            dest.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(src, dest)
            copied += 1
    if copied:
        print(f"Copied {copied} media files to {output_dir}")
    return copied


# -----------------------
# Output
# -----------------------

def post_to_dict(post: dict) -> dict:
    dt = post["date"]
    return {
        "url": post["url"],
        "title": post["title"],
        "date": dt.isoformat(),
        "readable_date": readable_date(dt),
        "rfc822_date": rfc822_date(dt),
        "tags": post.get("tags") or [],
        "layout": post.get("layout"),
        "excerpt": excerpt(post.get("content_html")),
        "content": post.get("content_html") or "",
    }


def write_site_data(collections: dict, tags: list, cfg: dict, output_dir: Path) -> Path:
    """Write the collections and tag list as JSON for the templating layer."""
    doc = {
        "site": {
            "title": cfg["site_title"],
            "description": cfg["site_description"],
            "url": cfg["site_url"],
        },
        "collections": {
            name: [post_to_dict(p) for p in posts]
            for name, posts in collections.items()
        },
        "tags": tags,
    }

    data_path = output_dir / cfg["site_data_filename"]
    data_path.write_text(json.dumps(doc, ensure_ascii=False, indent=2), encoding="utf-8")
    print(f"Wrote site data to {data_path}")
    return data_path


def cdata(text: str) -> str:
    # "]]>" would close the section early; split it across two sections
    return "<![CDATA[" + text.replace("]]>", "]]]]><![CDATA[>") + "]]>"


def generate_feed(posts: list, cfg: dict, output_dir: Path) -> Path:
    """
    Generate an RSS 2.0 feed, newest first.
    description contains rendered HTML (not Markdown), wrapped in CDATA.
    """
    site_title = html.escape(cfg["site_title"])
    site_description = html.escape(cfg.get("site_description", ""))
    site_url = cfg.get("site_url") or ""

    channel_link = f"{site_url}/" if site_url else "/"
    now = formatdate(time.time())

    items_xml = []
    for post in reversed(posts):
        link = f"{site_url}{post['url']}"
        description_cdata = cdata(post.get("content_html") or "")

        items_xml.append(f"""  <item>
    <title>{html.escape(post["title"])}</title>
    <link>{link}</link>
    <guid>{link}</guid>
    <pubDate>{rfc822_date(post["date"])}</pubDate>
    <description>{description_cdata}</description>
  </item>""")

    rss_xml = f"""<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0">
<channel>
  <title>{site_title}</title>
  <link>{channel_link}</link>
  <description>{site_description}</description>
  <lastBuildDate>{now}</lastBuildDate>
{chr(10).join(items_xml)}
</channel>
</rss>
"""

    feed_path = output_dir / cfg["feed_filename"]
    feed_path.write_text(rss_xml, encoding="utf-8")
    print(f"Wrote {feed_path}")
    return feed_path


def build(cfg: dict) -> dict:
    """Run the whole build for a loaded config and return the collections."""
    output_dir = cfg["output_dir"]
    output_dir.mkdir(parents=True, exist_ok=True)

    collections = build_collections(cfg)
    if not collections["posts"]:
        print("WARNING: No posts found.", file=sys.stderr)

    tags = get_tags(collections["posts"])

    copy_passthrough(cfg["content_root"], output_dir, cfg["passthrough"])
    copy_media(cfg["content_root"], output_dir, cfg["media_globs"])

    write_site_data(collections, tags, cfg, output_dir)
    generate_feed(collections["posts"], cfg, output_dir)

    return collections


def main():
    cfg = load_config(get_config_path_from_args())
    build(cfg)


if __name__ == "__main__":
    main()
