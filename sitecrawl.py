# sitecrawl.py
#!/usr/bin/env python3
"""
Async same-origin site crawler that collects pages and stylesheets.

Starting from a single seed URL the crawler:

- Follows same-origin anchors recursively; every normalized URL is fetched once
- Streams each HTML page and each linked stylesheet into a folder named after
  the seed host (``www.example.com`` -> ``www_example_com``)
- Waits until the whole discovered frontier has settled, including work that was
  discovered while waiting, and only then hands the folder to ``feature_audit``

Failures are per resource. A page or stylesheet that cannot be fetched or
written is logged, recorded as failed, and the rest of the crawl carries on.
Only an unparsable seed URL stops a run.
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import dataclasses
import enum
import hashlib
import itertools
import logging
import os
import re
import sys
from pathlib import Path
from typing import Iterable, Iterator, Mapping, Optional, Union
from urllib.parse import parse_qsl, unquote, urlencode, urljoin, urlsplit, urlunsplit

import httpx
import yaml
from bs4 import BeautifulSoup
from slugify import slugify

import feature_audit

LOGGER_NAME = "stylecrawl"
DEFAULT_USER_AGENT = "StyleCrawlBot/1.0 (+https://example.com/bot)"
CONFIG_ENV_VAR = "STYLECRAWL_CONFIG"
DEFAULT_CONFIG_FILE = "stylecrawl.yaml"


# --------------------------- Configuration --------------------------------- #


@dataclasses.dataclass(frozen=True)
class Config:
    output_root: str = "."
    user_agent: str = DEFAULT_USER_AGENT
    concurrency: int = 8
    timeout: float = 20.0  # seconds per resource, headers and body together

    @staticmethod
    def from_yaml(path: Path) -> "Config":
        with path.open("r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        return Config(
            output_root=str(data.get("output_root", ".")),
            user_agent=data.get("user_agent", DEFAULT_USER_AGENT),
            concurrency=max(1, int(data.get("concurrency", 8))),
            timeout=float(data.get("timeout", 20.0)),
        )

    @staticmethod
    def discover(environ: Optional[Mapping[str, str]] = None, cwd: Optional[Path] = None) -> "Config":
        """Load $STYLECRAWL_CONFIG, else ./stylecrawl.yaml, else the defaults."""
        environ = os.environ if environ is None else environ
        explicit = environ.get(CONFIG_ENV_VAR)
        if explicit:
            return Config.from_yaml(Path(explicit))
        local = Path(cwd or ".") / DEFAULT_CONFIG_FILE
        if local.is_file():
            return Config.from_yaml(local)
        return Config()


class SeedParseError(ValueError):
    """The seed is not an absolute http(s) URL."""


# ----------------------------- Utilities ----------------------------------- #


# Payloads the audit cannot read; never fetched, never given a file.
NON_TEXT_EXTENSIONS = re.compile(
    r"\.(?:pdf|docx?|xlsx?|pptx?|png|jpe?g|gif|bmp|webp|ico|svg|avif|mp4|mp3|wav|avi|mov|mkv|webm"
    r"|js|mjs|json|woff2?|ttf|otf|eot|zip|rar|7z|tar|gz|tgz|bz2|exe|dmg)$",
    re.I,
)


def sha1_short(s: str) -> str:
    return hashlib.sha1(s.encode("utf-8", errors="ignore")).hexdigest()[:10]


def file_safe_slug(text: str, maxlen: int = 80) -> str:
    s = slugify(text, max_length=maxlen, allow_unicode=False).strip("-_.")
    return s or sha1_short(text)


def normalize_url(url: str, base: Optional[str] = None, sort_query: bool = True) -> str:
    if base:
        url = urljoin(base, url)
    parts = urlsplit(url)
    scheme = parts.scheme.lower()
    netloc = parts.netloc.lower()
    if scheme not in ("http", "https"):
        return url
    if "@" in netloc:
        netloc = netloc.split("@", 1)[-1]
    if (scheme == "http" and netloc.endswith(":80")) or (scheme == "https" and netloc.endswith(":443")):
        netloc = netloc.rsplit(":", 1)[0]
    path = re.sub(r"/{2,}", "/", parts.path or "/")
    if path != "/" and path.endswith("/"):
        path = path.rstrip("/")
    query = parts.query
    if sort_query and query:
        q = parse_qsl(query, keep_blank_values=True)
        q.sort()
        query = urlencode(q, doseq=True)
    return urlunsplit((scheme, netloc, path, query, ""))


def origin_of(url: str) -> str:
    """scheme://host[:port] of an http(s) URL, '' for anything else."""
    try:
        parts = urlsplit(normalize_url(url))
    except ValueError:
        return ""
    if parts.scheme not in ("http", "https") or not parts.netloc:
        return ""
    return f"{parts.scheme}://{parts.netloc}"


def parse_seed(start_url: str) -> str:
    """Validate the seed and return it normalized. Raises SeedParseError."""
    raw = (start_url or "").strip()
    try:
        parts = urlsplit(raw)
        hostname = parts.hostname
        parts.port  # raises ValueError on a malformed port
    except ValueError as e:
        raise SeedParseError(f"Cannot parse seed URL {start_url!r}: {e}") from e
    if parts.scheme.lower() not in ("http", "https") or not hostname:
        raise SeedParseError(f"Seed URL must be an absolute http(s) URL, got {start_url!r}")
    return normalize_url(raw)


def derive_folder_name(url: str) -> str:
    return (urlsplit(url).hostname or "site").replace(".", "_")


def is_non_text_resource(url: str) -> bool:
    return bool(NON_TEXT_EXTENSIONS.search(urlsplit(url).path))


def is_probably_html(url: str, content_type: Optional[str]) -> bool:
    if not content_type or "html" in content_type.lower():
        return True
    return bool(re.search(r"\.(?:x?html?)$", urlsplit(url).path, flags=re.I))


def resource_base_name(url: str) -> str:
    """Last path segment made filesystem-safe, extension kept; the host when the path is empty."""
    parts = urlsplit(url)
    name = unquote(parts.path.rstrip("/").rsplit("/", 1)[-1]) or parts.hostname or "index"
    stem, dot, ext = name.rpartition(".")
    if not dot:
        stem, ext = name, ""
    ext = re.sub(r"[^a-z0-9]", "", ext.lower())
    stem = file_safe_slug(stem, maxlen=80)
    return f"{stem}.{ext}" if ext else stem


def build_filename(folder_name: str, number: int, url: str, kind: "ResourceKind") -> str:
    base = resource_base_name(url)
    if kind is ResourceKind.PAGE and not base.endswith(".html"):
        base = f"{base}.html"
    elif kind is ResourceKind.STYLESHEET and "." not in base:
        base = f"{base}.css"
    return f"{folder_name}_{number}_{base}"


def ensure_dir(p: Path) -> None:
    p.mkdir(parents=True, exist_ok=True)


# ----------------------------- Logging ------------------------------------- #


LOG_FORMAT = "%(asctime)s %(levelname)s [%(site)s] %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"


def setup_root_logger(level: int = logging.INFO) -> None:
    root_logger = logging.getLogger(LOGGER_NAME)
    root_logger.setLevel(level)
    root_logger.handlers.clear()
    ch = logging.StreamHandler(stream=sys.stdout)
    ch.setLevel(level)
    ch.setFormatter(logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATEFMT))
    root_logger.addHandler(ch)


def close_handlers(logger: logging.Logger) -> None:
    for handler in list(logger.handlers):
        handler.close()
        logger.removeHandler(handler)


def get_site_logger(site_dir: Path, site: str) -> logging.LoggerAdapter:
    logger = logging.getLogger(f"{LOGGER_NAME}.{site}")
    logger.setLevel(logging.INFO)
    close_handlers(logger)
    fh = logging.FileHandler(site_dir / "crawl.log", encoding="utf-8")
    fh.setLevel(logging.INFO)
    fh.setFormatter(logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATEFMT))
    logger.addHandler(fh)
    logger.propagate = True
    return logging.LoggerAdapter(logger, extra={"site": site})


# ------------------------------ Data Model --------------------------------- #


class ResourceKind(str, enum.Enum):
    PAGE = "page"
    STYLESHEET = "stylesheet"


class Outcome(str, enum.Enum):
    SAVED = "saved"
    FAILED = "failed"
    SKIPPED = "skipped"  # page answered with non-HTML, or redirected onto a visited page


@dataclasses.dataclass(frozen=True)
class CrawlTask:
    url: str
    kind: ResourceKind
    base_url: str


@dataclasses.dataclass
class DownloadRecord:
    url: str
    kind: ResourceKind
    outcome: Outcome
    path: Optional[Path] = None
    final_url: Optional[str] = None  # as served, after redirects
    error: Optional[str] = None

    @property
    def saved(self) -> bool:
        return self.outcome is Outcome.SAVED


@dataclasses.dataclass
class CrawlSession:
    """State owned by one crawl: per-kind visited sets and filename counters, and results."""

    start_url: str
    origin: str
    folder_name: str
    output_dir: Path
    visited: dict[ResourceKind, set[str]] = dataclasses.field(
        default_factory=lambda: {kind: set() for kind in ResourceKind}
    )
    records: list[DownloadRecord] = dataclasses.field(default_factory=list)
    counters: dict[ResourceKind, Iterator[int]] = dataclasses.field(
        default_factory=lambda: {kind: itertools.count(1) for kind in ResourceKind}
    )

    @classmethod
    def from_seed(cls, start_url: str, output_root: Union[str, Path]) -> "CrawlSession":
        seed = parse_seed(start_url)
        folder_name = derive_folder_name(seed)
        return cls(
            start_url=seed,
            origin=origin_of(seed),
            folder_name=folder_name,
            output_dir=Path(output_root) / folder_name,
        )

    def claim(self, url: str, kind: ResourceKind) -> bool:
        """Mark ``url`` visited as ``kind``. False if it already was.

        Pages and stylesheets are tracked apart: a URL reached through an
        anchor is still downloaded when a page links it as a stylesheet.

        Check and insert happen with no await in between, so on one event loop
        exactly one of several concurrent discoveries wins.
        """
        seen = self.visited[kind]
        if url in seen:
            return False
        seen.add(url)
        return True

    def next_number(self, kind: ResourceKind) -> int:
        return next(self.counters[kind])

    def is_internal(self, url: str) -> bool:
        return origin_of(url) == self.origin

    def saved(self, kind: ResourceKind) -> list[DownloadRecord]:
        return [r for r in self.records if r.kind is kind and r.saved]

    @property
    def failures(self) -> list[DownloadRecord]:
        return [r for r in self.records if r.outcome is Outcome.FAILED]


# ------------------------------- HTML Parsing ------------------------------- #


@dataclasses.dataclass(frozen=True)
class ParsedPage:
    stylesheet_links: tuple[str, ...] = ()
    anchor_links: tuple[str, ...] = ()


def _resolve(href: str, base: str) -> Optional[str]:
    try:
        return normalize_url(href, base=base)
    except ValueError:
        # e.g. "http://[::1" - invalid hrefs are dropped
        return None


def parse_page(content: Union[str, bytes], page_base_url: str) -> ParsedPage:
    """Collect stylesheet and anchor targets, resolved against the page URL.

    Fragment-only and ``mailto:`` anchors, non-http(s) targets, and
    protocol-relative or fragment-bearing stylesheet hrefs are left out.
    Origin checks are the caller's business.
    """
    soup = BeautifulSoup(content, "lxml")
    base = page_base_url
    base_tag = soup.find("base", href=True)
    if base_tag and base_tag["href"].strip():
        with contextlib.suppress(ValueError):
            base = urljoin(page_base_url, base_tag["href"].strip())

    stylesheets: dict[str, None] = {}
    for link in soup.find_all("link", href=True):
        rel = link.get("rel") or []
        if isinstance(rel, str):
            rel = rel.split()
        if "stylesheet" not in {r.lower() for r in rel}:
            continue
        href = link["href"].strip()
        if not href or href.startswith("//") or "#" in href:
            continue
        url = _resolve(href, base)
        if url and urlsplit(url).scheme in ("http", "https"):
            stylesheets[url] = None

    anchors: dict[str, None] = {}
    for a in soup.find_all("a", href=True):
        href = a["href"].strip()
        if not href or href.startswith("#") or href.lower().startswith("mailto:"):
            continue
        url = _resolve(href, base)
        if url and urlsplit(url).scheme in ("http", "https"):
            anchors[url] = None

    return ParsedPage(stylesheet_links=tuple(stylesheets), anchor_links=tuple(anchors))


# ---------------------------- Completion Gate ------------------------------ #


class CompletionGate:
    """Frontier of dispatched tasks that have not settled yet.

    Workers call :meth:`settle` only after dispatching everything their task
    discovered, so the tally reaches zero only once the frontier is empty and
    no task is still running.
    """

    def __init__(self) -> None:
        self._queue: asyncio.Queue[CrawlTask] = asyncio.Queue()
        self._pending = 0

    @property
    def pending(self) -> int:
        return self._pending

    def dispatch(self, task: CrawlTask) -> None:
        self._pending += 1
        self._queue.put_nowait(task)

    async def next(self) -> CrawlTask:
        return await self._queue.get()

    def settle(self) -> None:
        self._pending -= 1
        self._queue.task_done()

    async def wait(self) -> None:
        await self._queue.join()


# ---------------------------- Resource Fetcher ----------------------------- #


class ResourceFetcher:
    """Streams one resource per call into the session folder."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        session: CrawlSession,
        cfg: Config,
        logger: logging.LoggerAdapter,
    ) -> None:
        self.client = client
        self.session = session
        self.cfg = cfg
        self.logger = logger
        self.sem = asyncio.Semaphore(cfg.concurrency)

    async def fetch(self, url: str, kind: ResourceKind) -> DownloadRecord:
        number = self.session.next_number(kind)
        path = self.session.output_dir / build_filename(self.session.folder_name, number, url, kind)
        try:
            async with self.sem:
                record = await asyncio.wait_for(self._stream_to_file(url, kind, path), timeout=self.cfg.timeout)
        except asyncio.TimeoutError:
            record = self._failed(url, kind, path, f"timed out after {self.cfg.timeout:g}s")
        except (httpx.HTTPError, httpx.StreamError, httpx.InvalidURL, OSError) as e:
            record = self._failed(url, kind, path, str(e) or e.__class__.__name__)
        self.session.records.append(record)
        return record

    async def _stream_to_file(self, url: str, kind: ResourceKind, path: Path) -> DownloadRecord:
        async with self.client.stream("GET", url) as resp:
            resp.raise_for_status()
            final_url = str(resp.url)
            content_type = resp.headers.get("Content-Type", "")
            if kind is ResourceKind.PAGE and not is_probably_html(final_url, content_type):
                self.logger.info(f"Not HTML ({content_type}), skipping: {url}")
                return DownloadRecord(url=url, kind=kind, outcome=Outcome.SKIPPED, final_url=final_url)
            landed = normalize_url(final_url)
            if kind is ResourceKind.PAGE and landed != url and not self.session.claim(landed, kind):
                self.logger.info(f"Redirected onto a visited page, skipping: {url} -> {final_url}")
                return DownloadRecord(url=url, kind=kind, outcome=Outcome.SKIPPED, final_url=final_url)
            with path.open("wb") as f:
                async for chunk in resp.aiter_bytes():
                    if chunk:
                        f.write(chunk)
        self.logger.info(f"Saved {kind.value}: {url} -> {path.name}")
        return DownloadRecord(url=url, kind=kind, outcome=Outcome.SAVED, path=path, final_url=final_url)

    def _failed(self, url: str, kind: ResourceKind, path: Path, message: str) -> DownloadRecord:
        self.logger.error(f"Error downloading {url}: {message}")
        with contextlib.suppress(OSError):
            path.unlink(missing_ok=True)
        return DownloadRecord(url=url, kind=kind, outcome=Outcome.FAILED, error=message)


# ------------------------------ Site Crawler ------------------------------- #


class SiteCrawler:
    """Per-site asynchronous crawler."""

    def __init__(self, start_url: str, cfg: Config, transport: Optional[httpx.AsyncBaseTransport] = None) -> None:
        self.cfg = cfg
        self.session = CrawlSession.from_seed(start_url, cfg.output_root)
        self.transport = transport
        ensure_dir(self.session.output_dir)
        self.logger = get_site_logger(self.session.output_dir, self.session.folder_name)
        self.gate = CompletionGate()

    # --------------------------- Public API -------------------------------- #

    async def run(self) -> CrawlSession:
        self.logger.info(f"Starting crawl: {self.session.start_url} (origin {self.session.origin})")

        headers = {
            "User-Agent": self.cfg.user_agent,
            "Accept": "text/html,application/xhtml+xml,text/css;q=0.9,*/*;q=0.8",
            "Accept-Language": "en;q=0.7, *;q=0.5",
        }
        limits = httpx.Limits(max_keepalive_connections=20, max_connections=max(self.cfg.concurrency, 10))
        timeout = httpx.Timeout(self.cfg.timeout)

        async with httpx.AsyncClient(
            headers=headers, limits=limits, timeout=timeout, follow_redirects=True, transport=self.transport
        ) as client:
            fetcher = ResourceFetcher(client, self.session, self.cfg, self.logger)
            self._dispatch(self.session.start_url, ResourceKind.PAGE, self.session.start_url)

            workers = [asyncio.create_task(self._worker(fetcher)) for _ in range(self.cfg.concurrency)]
            await self.gate.wait()
            for w in workers:
                w.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await asyncio.gather(*workers)

        self.logger.info(
            f"Completed: {len(self.session.saved(ResourceKind.PAGE))} page(s), "
            f"{len(self.session.saved(ResourceKind.STYLESHEET))} stylesheet(s) saved. "
            f"Failures: {len(self.session.failures)}"
        )
        close_handlers(self.logger.logger)
        return self.session

    # --------------------------- Internal ---------------------------------- #

    def _dispatch(self, url: str, kind: ResourceKind, base_url: str) -> bool:
        if is_non_text_resource(url):
            self.logger.debug(f"Skipping non-text resource: {url}")
            return False
        if not self.session.claim(url, kind):
            return False
        self.gate.dispatch(CrawlTask(url=url, kind=kind, base_url=base_url))
        return True

    async def _worker(self, fetcher: ResourceFetcher) -> None:
        while True:
            task = await self.gate.next()
            try:
                await self._process(fetcher, task)
            except Exception as e:
                self.logger.exception(f"Unhandled error processing {task.url}: {e}")
            finally:
                self.gate.settle()

    async def _process(self, fetcher: ResourceFetcher, task: CrawlTask) -> None:
        record = await fetcher.fetch(task.url, task.kind)
        if task.kind is ResourceKind.STYLESHEET or not record.saved:
            return

        final_url = record.final_url or task.url
        if not self.session.is_internal(final_url):
            self.logger.info(f"Redirected off-site, not following links: {task.url} -> {final_url}")
            return

        try:
            parsed = parse_page(record.path.read_bytes(), final_url)
        except Exception as e:
            self.logger.warning(f"Failed extracting links from {final_url}: {e}")
            return

        for url in parsed.stylesheet_links:
            self._dispatch(url, ResourceKind.STYLESHEET, final_url)
        for url in parsed.anchor_links:
            if self.session.is_internal(url):
                self._dispatch(url, ResourceKind.PAGE, final_url)


async def crawl(
    start_url: str,
    cfg: Optional[Config] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> CrawlSession:
    crawler = SiteCrawler(start_url, cfg or Config(), transport=transport)
    return await crawler.run()


# ------------------------------- CLI --------------------------------------- #


def parse_args(argv: Optional[Iterable[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Crawl a website and audit its stylesheets and pages for modern CSS/HTML features."
    )
    parser.add_argument("url", help="Seed URL; pages on the same origin are crawled.")
    return parser.parse_args(argv)


async def main_async(start_url: str, cfg: Config, transport: Optional[httpx.AsyncBaseTransport] = None) -> int:
    root_adapter = logging.LoggerAdapter(logging.getLogger(LOGGER_NAME), extra={"site": "ALL"})
    try:
        crawler = SiteCrawler(start_url, cfg, transport=transport)
    except SeedParseError as e:
        root_adapter.error(str(e))
        return 1

    session = await crawler.run()
    if not session.saved(ResourceKind.PAGE):
        root_adapter.error(f"Nothing downloaded from {session.start_url}")

    css_report, html_report = feature_audit.audit_directory(session.output_dir)
    print(feature_audit.render_report(css_report, html_report))
    return 0


def main(argv: Optional[Iterable[str]] = None) -> None:
    args = parse_args(argv)
    cfg = Config.discover()
    setup_root_logger()
    try:
        code = asyncio.run(main_async(args.url, cfg))
    except KeyboardInterrupt:
        code = 130
    sys.exit(code)


if __name__ == "__main__":
    main()
