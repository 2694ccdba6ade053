"""Website crawler - fills indexed_pages from active trusted sites"""
import logging
import re
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional
from urllib.parse import urldefrag, urljoin, urlparse

import requests
from bs4 import BeautifulSoup

from models import IndexedPage, TrustedSite

logger = logging.getLogger(__name__)

USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/91.0.4472.124 Safari/537.36"
)

# Page chrome that never carries answerable content
NOISE_SELECTORS = (
    "script, style, nav, footer, header, aside, form, noscript, iframe, "
    "#main-nav, .main-header, [role=\"navigation\"], .ads, #sidebar, .sidebar"
)

SKIPPED_EXTENSIONS = (".pdf", ".jpg", ".jpeg", ".png", ".gif", ".svg", ".zip", ".mp4", ".mp3")


@dataclass
class ExtractedPage:
    url: str
    title: str
    content: str
    links: List[str] = field(default_factory=list)


@dataclass
class CrawlReport:
    sites: int = 0
    indexed: int = 0
    skipped: int = 0
    failed: int = 0


def normalize_whitespace(text) -> str:
    return re.sub(r"\s+", " ", text or "").strip()


def extract_page(html, url, base_domain) -> ExtractedPage:
    """Clean an HTML document into title, plain text and same-site links"""
    soup = BeautifulSoup(html, "html.parser")

    links = []
    for link in soup.find_all("a", href=True):
        next_url, _ = urldefrag(urljoin(url, link["href"]))
        parsed = urlparse(next_url)
        if (parsed.scheme in ("http", "https")
                and parsed.netloc == base_domain
                and not parsed.path.lower().endswith(SKIPPED_EXTENSIONS)
                and next_url not in links):
            links.append(next_url)

    title_tag = soup.find("title")
    title = normalize_whitespace(title_tag.get_text()) if title_tag else ""

    for tag in soup.select(NOISE_SELECTORS):
        tag.decompose()

    body = soup.body or soup
    content = normalize_whitespace(body.get_text(separator=" "))

    return ExtractedPage(url=url, title=title or "No title", content=content, links=links)


class SiteCrawler:
    """Breadth-first, same-host crawler with a page limit per site"""

    def __init__(self, max_pages=100, delay_ms=100, min_content_chars=100, session=None, max_workers=5):
        self.max_pages = max_pages
        self.delay = delay_ms / 1000.0
        self.min_content_chars = min_content_chars
        self.session = session or requests.Session()
        self.max_workers = max_workers

    @classmethod
    def from_settings(cls, settings):
        return cls(
            max_pages=settings.crawl_max_pages,
            delay_ms=settings.crawl_delay_ms,
            min_content_chars=settings.crawl_min_content_chars,
        )

    def fetch_page(self, url, base_domain) -> Optional[ExtractedPage]:
        """Download and extract one page; None for non-HTML or failed fetches"""
        try:
            resp = self.session.get(url, headers={"User-Agent": USER_AGENT}, timeout=15)
        except requests.Timeout:
            logger.warning("⏱️  Timeout: %s", url)
            return None
        except requests.RequestException as e:
            logger.warning("❌ Crawl failed: %s (%s)", url, e)
            return None

        if resp.status_code != 200:
            logger.warning("⚠️  Status %s: %s", resp.status_code, url)
            return None
        if "text/html" not in resp.headers.get("Content-Type", ""):
            return None

        return extract_page(resp.text, url, base_domain)

    def crawl_site(self, db, site, report=None) -> CrawlReport:
        report = report or CrawlReport()
        report.sites += 1
        base_domain = urlparse(site.url).netloc
        visited = set()
        to_visit = [site.url]

        logger.info("🔍 Crawling %s (%s), max %s pages", site.name, site.url, self.max_pages)
        start_time = time.time()

        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            while to_visit and len(visited) < self.max_pages:
                batch_size = min(self.max_workers, self.max_pages - len(visited))
                batch = []
                while to_visit and len(batch) < batch_size:
                    url = to_visit.pop(0)
                    if url not in visited:
                        visited.add(url)
                        batch.append(url)

                futures = {executor.submit(self.fetch_page, url, base_domain): url for url in batch}
                for future in as_completed(futures):
                    url = futures[future]
                    page = future.result()
                    if page is None:
                        report.failed += 1
                        continue

                    for link in page.links:
                        if link not in visited and link not in to_visit:
                            to_visit.append(link)

                    if self.store_page(db, site, page):
                        report.indexed += 1
                        logger.info("  + Indexed: %s", url)
                    else:
                        report.skipped += 1
                        logger.info("  - Skipped (empty/short content): %s", url)

                if self.delay:
                    time.sleep(self.delay)

        logger.info("✅ Crawled %s pages of %s in %.1fs", len(visited), site.url, time.time() - start_time)
        return report

    def store_page(self, db, site, page) -> bool:
        """Upsert a page by url; short pages are never stored"""
        if len(page.content) < self.min_content_chars:
            return False

        existing = db.query(IndexedPage).filter(IndexedPage.url == page.url).first()
        now = datetime.now(timezone.utc)
        if existing is None:
            db.add(IndexedPage(
                trusted_site_id=site.id,
                url=page.url,
                title=page.title,
                content=page.content,
                last_crawled_at=now,
            ))
        else:
            if existing.content != page.content:
                existing.embedding = None
            existing.trusted_site_id = site.id
            existing.title = page.title
            existing.content = page.content
            existing.last_crawled_at = now
        db.commit()
        return True

    def crawl(self, db, site_id=None) -> CrawlReport:
        """Crawl every active trusted site, or just one"""
        query = db.query(TrustedSite).filter(TrustedSite.is_active.is_(True))
        if site_id is not None:
            query = query.filter(TrustedSite.id == site_id)
        sites = query.all()

        report = CrawlReport()
        if not sites:
            logger.warning("⚠️  No active trusted sites to crawl")
            return report

        for site in sites:
            self.crawl_site(db, site, report)
        logger.info("✅ Crawler finished: %s", report)
        return report
