#!/usr/bin/env python3
"""
Post-process rendered pages: copy buttons on code blocks and
external-link markers.

Nothing here runs at import time. Each augmenter takes the parsed
document it works on, so pages can be processed (and tested) one by one.
"""
import sys
import asyncio
from pathlib import Path
from urllib.parse import urljoin, urlparse

from bs4 import BeautifulSoup  # pip install beautifulsoup4

import build_site

CODE_BLOCK_SELECTOR = "pre.highlight"
COPY_ICON_SRC = "/assets/images/copy-symbolic.svg"
COPY_RESET_DELAY = 0.5  # seconds

EXTERNAL_LINK_CLASS = "external-link"
EXTERNAL_LINK_TARGET = "_blank"
EXTERNAL_LINK_REL = "noopener"


# -----------------------
# Copy buttons
# -----------------------

class CopyButton:
    """
    Click behaviour of the copy button attached to one code block.

    `clipboard` is anything with an async ``write_text(text)`` method.
    Clicks while the button is disabled are ignored, like a disabled
    <button> in the browser.
    """

    def __init__(self, element, button, clipboard=None, *, delay: float = COPY_RESET_DELAY):
        self.element = element
        self.button = button
        self.clipboard = clipboard
        self.delay = delay
        self.disabled = False

    def _set_disabled(self, value: bool):
        self.disabled = value
        if value:
            self.button["disabled"] = ""
        elif self.button.has_attr("disabled"):
            del self.button["disabled"]

    async def click(self):
        if self.disabled:
            return

        self._set_disabled(True)

        try:
            text = self.element.get_text() or ""
            await self.clipboard.write_text(text)
        except Exception as exc:
            print(f"ERROR: Error copying to clipboard: {exc!r}", file=sys.stderr)

        await asyncio.sleep(self.delay)
        self._set_disabled(False)


def attach_copy_buttons(document, clipboard=None, *, delay: float = COPY_RESET_DELAY) -> list:
    """
    Append a copy button to every highlighted code block in `document`
    and return the controllers, one per block.

    Blocks that already have a button are left as they are.
    """
    buttons = []

    for element in document.select(CODE_BLOCK_SELECTOR):
        button = element.find("button", recursive=False)
        if button is None:
            button = document.new_tag("button", attrs={"type": "button"})
            icon = document.new_tag("img", attrs={"src": COPY_ICON_SRC, "alt": ""})
            button.append(icon)
            element.append(button)

        buttons.append(CopyButton(element, button, clipboard, delay=delay))

    return buttons


# -----------------------
# External links
# -----------------------

def _hostname(url: str, base: str = "") -> str:
    # an href that does not parse has no host, like a.hostname in the browser
    try:
        return urlparse(urljoin(base, url)).hostname or ""
    except ValueError:
        return ""


def decorate_external_links(document, page_url: str) -> int:
    """
    Make links to other hosts open in a new tab, without access to the
    opener, and give them the external-link class.

    `page_url` is where the page is served from; relative hrefs resolve
    against it. Returns the number of links marked.
    """
    page_host = _hostname(page_url)
    marked = 0

    for link in document.find_all("a"):
        href = link.get("href")
        if not href:
            continue
        if _hostname(href, page_url) == page_host:
            continue

        link["target"] = EXTERNAL_LINK_TARGET
        link["rel"] = EXTERNAL_LINK_REL
        classes = list(link.get("class", []))
        if EXTERNAL_LINK_CLASS not in classes:
            classes.append(EXTERNAL_LINK_CLASS)
        link["class"] = classes
        marked += 1

    return marked


# -----------------------
# Pages
# -----------------------

def augment_html(page_html: str, page_url: str) -> str:
    """Apply both augmenters to one rendered page."""
    soup = BeautifulSoup(page_html, "html.parser")
    attach_copy_buttons(soup)
    decorate_external_links(soup, page_url)
    return str(soup)


def page_url_for(path: Path, output_dir: Path, site_url: str) -> str:
    """_site/posts/foo/index.html -> https://example.com/posts/foo/index.html"""
    rel = path.relative_to(output_dir).as_posix()
    base = site_url or "http://localhost"
    return f"{base}/{rel}"


def augment_site(output_dir: Path, site_url: str = "") -> int:
    """Augment every .html file under `output_dir` in place."""
    if not output_dir.is_dir():
        print(f"WARNING: Output directory not found at {output_dir}", file=sys.stderr)
        return 0

    count = 0
    for path in sorted(output_dir.rglob("*.html")):
        page_html = path.read_text(encoding="utf-8")
        page_url = page_url_for(path, output_dir, site_url)
        path.write_text(augment_html(page_html, page_url), encoding="utf-8")
        count += 1

    print(f"Augmented {count} pages in {output_dir}")
    return count


def main():
    cfg = build_site.load_config(build_site.get_config_path_from_args())
    augment_site(cfg["output_dir"], cfg["site_url"])


if __name__ == "__main__":
    main()
