"""
Engagement digest for the space publishing pipeline.

Harvests the links mentioned in the rendered transcript, labels each with
its page title (best effort, bounded in count and time), and renders the
link list plus the "open full conversation" fragment for the reference post.
"""

import html
import re
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass
from html.parser import HTMLParser
from typing import Optional

import httpx
import tldextract

from space_press.shared import (
    tprint as print,
    LinkTitleFetchError,
)

USER_AGENT = "Mozilla/5.0 (compatible; space-press/0.1; +link-preview)"
MAX_TITLE_BYTES = 256 * 1024
MAX_TITLE_CHARS = 160

STATUS_LINK_RE = re.compile(r"https?://(?:www\.)?(?:x|twitter)\.com/([^/?#]+)/status/(\d+)", re.I)

# Bundled public-suffix snapshot only; never fetches the list at runtime
_domain_extract = tldextract.TLDExtract(suffix_list_urls=())


@dataclass(frozen=True)
class LinkEntry:
    url: str
    label: str
    title_fetched: bool = False


class _AnchorCollector(HTMLParser):
    def __init__(self):
        super().__init__(convert_charrefs=True)
        self.hrefs = []

    def handle_starttag(self, tag, attrs):
        if tag != "a":
            return
        for name, value in attrs:
            if name == "href" and value:
                self.hrefs.append(value.strip())


class _TitleParser(HTMLParser):
    def __init__(self):
        super().__init__(convert_charrefs=True)
        self.in_title = False
        self.parts = []
        self.done = False

    def handle_starttag(self, tag, attrs):
        if tag == "title" and not self.done:
            self.in_title = True

    def handle_endtag(self, tag):
        if tag == "title" and self.in_title:
            self.in_title = False
            self.done = True

    def handle_data(self, data):
        if self.in_title:
            self.parts.append(data)


def select_links(hrefs, limit: int) -> list[str]:
    """Distinct http(s) URLs in first-seen order, at most ``limit`` of them."""
    seen = set()
    links = []
    if limit <= 0:
        return links
    for href in hrefs:
        if not href.lower().startswith(("http://", "https://")) or href in seen:
            continue
        seen.add(href)
        links.append(href)
        if len(links) >= limit:
            break
    return links


def extract_links(markup: str, limit: int) -> list[str]:
    """Distinct http(s) anchor targets in ``markup``, see select_links."""
    if not markup:
        return []
    collector = _AnchorCollector()
    collector.feed(markup)
    collector.close()
    return select_links(collector.hrefs, limit)


def fallback_label(url: str) -> str:
    """Registrable domain of ``url`` (e.g. "example.co.uk"), or the URL itself."""
    try:
        ext = _domain_extract(url)
    except ValueError:
        return url
    if not ext.domain:
        return url
    return ".".join(p for p in (ext.domain, ext.suffix) if p)


def parse_title(page: str) -> str:
    parser = _TitleParser()
    parser.feed(page)
    title = re.sub(r"\s+", " ", "".join(parser.parts)).strip()
    if len(title) > MAX_TITLE_CHARS:
        title = title[:MAX_TITLE_CHARS - 1].rstrip() + "…"
    return title


def fetch_title(url: str, timeout: float) -> str:
    """Fetch ``url`` and return its <title>; raises LinkTitleFetchError."""
    headers = {"User-Agent": USER_AGENT, "Accept": "text/html,*/*;q=0.5"}
    try:
        with httpx.stream("GET", url, headers=headers, timeout=timeout,
                          follow_redirects=True) as response:
            response.raise_for_status()
            ctype = response.headers.get("Content-Type", "")
            if ctype and "html" not in ctype.lower():
                raise LinkTitleFetchError(f"not an HTML page ({ctype})")
            raw = b""
            for chunk in response.iter_bytes():
                raw += chunk
                if len(raw) >= MAX_TITLE_BYTES:
                    break
            page = raw[:MAX_TITLE_BYTES].decode(response.charset_encoding or "utf-8", "ignore")
    except LinkTitleFetchError:
        raise
    except (httpx.HTTPError, httpx.InvalidURL, LookupError, UnicodeError) as e:
        # LookupError: the page declared a charset Python has no codec for
        raise LinkTitleFetchError(f"{url}: {e}") from e
    title = parse_title(page)
    if not title:
        raise LinkTitleFetchError(f"{url}: page has no title")
    return title


def _label_for(url: str, timeout: float) -> LinkEntry:
    try:
        return LinkEntry(url, fetch_title(url, timeout), True)
    except LinkTitleFetchError:
        return LinkEntry(url, fallback_label(url))
    except Exception as e:
        print(f"  Warning: title fetch for {url} failed unexpectedly ({e})")
        return LinkEntry(url, fallback_label(url))


def resolve_links(urls: list[str], fetch_titles: bool = True, timeout: float = 4,
                  workers: int = 6) -> list[LinkEntry]:
    """Label each URL, fetching titles concurrently when enabled.

    Every fetch is bounded by ``timeout``; anything still running once the
    overall budget has passed keeps its fallback label. Results keep the
    input order.
    """
    entries = [LinkEntry(u, fallback_label(u)) for u in urls]
    if not fetch_titles or not urls:
        return entries

    pool = ThreadPoolExecutor(max_workers=max(1, min(workers, len(urls))))
    try:
        futures = {pool.submit(_label_for, u, timeout): i for i, u in enumerate(urls)}
        rounds = -(-len(urls) // max(1, min(workers, len(urls))))
        done, pending = wait(futures, timeout=timeout * rounds + 1)
        for fut in done:
            entries[futures[fut]] = fut.result()
        if pending:
            print(f"  {len(pending)} link title(s) still pending, using fallback labels")
    finally:
        pool.shutdown(wait=False, cancel_futures=True)
    return entries


def render_links_html(entries: list[LinkEntry]) -> str:
    """Ordered list of links; empty input renders nothing."""
    if not entries:
        return ""
    items = []
    for e in entries:
        href = html.escape(e.url, quote=True)
        items.append(f'<li><a href="{href}" target="_blank" rel="noopener">{html.escape(e.label)}</a></li>')
    return '<ol class="sp-links">\n' + "\n".join(items) + "\n</ol>\n"


def parse_reference_link(url: str) -> tuple[Optional[str], Optional[str]]:
    """(handle, status id) of an x.com/twitter.com status link."""
    m = STATUS_LINK_RE.search(url or "")
    if not m:
        return None, None
    return m.group(1), m.group(2)


def render_reply_digest(reference_link: str) -> str:
    """One-line fragment pointing readers at the full conversation."""
    link = (reference_link or "").strip()
    if not link.lower().startswith(("http://", "https://")):
        return ""
    handle, _ = parse_reference_link(link)
    href = html.escape(link, quote=True)
    suffix = f" from @{html.escape(handle)}" if handle else ""
    return (f'<p class="sp-replies"><a href="{href}" target="_blank" rel="noopener">'
            f'Open the full conversation</a>{suffix}</p>\n')
