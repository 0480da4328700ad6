from __future__ import annotations
import logging, re, time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple
import requests

from .errors import SearchError

SEARCH_URL = "https://api.github.com/search/repositories"
PER_PAGE = 20
USER_AGENT = "Github-Plugin-Hub-App"

DEFAULT_SEARCH_QUERY = "topic:ai-plugin"
ALL_PLUGINS_QUERY = "ai"

CATEGORY_QUERIES = {
    "functional": "ai tool OR ai utility",
    "chat": "ai chat OR chatbot",
    "model": "llm OR lora OR checkpoint",
    "image": 'stable diffusion OR midjourney OR "image generation"',
    "entertainment": "ai game OR ai fun",
}

# filler words dropped from free-text searches before they go to GitHub
FILLER_RE = re.compile(r"的|个|可以|找|搜|查找|推荐|插件|工具|一下|有没有|关于")
WHITESPACE_RE = re.compile(r"\s+")

@dataclass
class Repo:
    id: int
    name: str
    full_name: str = ""
    owner_login: str = ""
    owner_avatar_url: str = ""
    description: Optional[str] = None
    stargazers_count: int = 0
    html_url: str = ""
    updated_at: str = ""
    topics: List[str] = field(default_factory=list)
    license_key: Optional[str] = None

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "Repo":
        owner = data.get("owner") or {}
        lic = data.get("license") or None
        return cls(
            id=int(data["id"]),
            name=data.get("name") or "",
            full_name=data.get("full_name") or "",
            owner_login=owner.get("login") or "",
            owner_avatar_url=owner.get("avatar_url") or "",
            description=data.get("description"),
            stargazers_count=int(data.get("stargazers_count") or 0),
            html_url=data.get("html_url") or "",
            updated_at=data.get("updated_at") or "",
            topics=list(data.get("topics") or []),
            license_key=lic.get("key") if isinstance(lic, dict) else None,
        )

def optimize_search_query(q: str) -> str:
    """Turn a natural-language search into GitHub search keywords."""
    q = (q or "").strip()
    if not q:
        return DEFAULT_SEARCH_QUERY
    optimized = WHITESPACE_RE.sub(" ", FILLER_RE.sub(" ", q)).strip()
    lower = optimized.lower()
    if "ai" not in lower and "llm" not in lower and "gpt" not in lower:
        if "翻译" in lower:
            optimized = f"{optimized} translate ai"
        else:
            optimized = f"{optimized} ai".strip()
    return optimized

def resolve_category(category: Optional[str], q: str = "") -> str:
    if (q or "").strip() and not category:
        return "search"
    return category or "all"

def build_listing_query(category: Optional[str], q: str = "", sort: str = "stars") -> Tuple[str, str]:
    """Return ``(github_query, sort)`` for a category page."""
    category = resolve_category(category, q)
    sort = sort or "stars"
    if category == "latest":
        sort = "updated"
    if category == "search":
        return optimize_search_query(q), sort
    return CATEGORY_QUERIES.get(category, ALL_PLUGINS_QUERY), sort

def search_repositories(
    query: str = DEFAULT_SEARCH_QUERY,
    sort: str = "stars",
    page: int = 1,
    *,
    token: Optional[str] = None,
    timeout: float = 30.0,
    session: Optional[requests.Session] = None,
    logger: logging.Logger | None = None,
) -> List[Repo]:
    logger = logger or logging.getLogger("plugin-hub")
    headers = {"User-Agent": USER_AGENT, "Accept": "application/vnd.github.v3+json"}
    if token:
        headers["Authorization"] = f"token {token}"
    params = {"q": query, "sort": sort, "order": "desc", "per_page": PER_PAGE, "page": page}
    http = session or requests
    try:
        resp = http.get(SEARCH_URL, headers=headers, params=params, timeout=timeout)
    except requests.RequestException as e:
        raise SearchError(f"GitHub request failed: {e}") from e
    if resp.status_code != 200:
        raise SearchError(f"GitHub API returned {resp.status_code}: {resp.text[:200]}", resp.status_code)
    try:
        data = resp.json()
    except ValueError as e:
        raise SearchError(f"Unexpected GitHub response: {resp.text[:200]}", resp.status_code) from e
    items = [Repo.from_api(d) for d in (data.get("items") or []) if isinstance(d, dict) and "id" in d]
    logger.info(f"Fetched {len(items)} repositories from GitHub for query: \"{query}\" (page {page})")
    return items

class RepoPager:
    """Infinite-scroll style paging over one search; an empty page ends it."""

    def __init__(self, query: str, sort: str = "stars", *, token: Optional[str] = None, timeout: float = 30.0, monitor=None, fetch=None):
        self.query = query
        self.sort = sort
        self.token = token
        self.timeout = timeout
        self.monitor = monitor
        self._fetch = fetch or search_repositories
        self.page = 0
        self.has_more = True
        self.loading = False

    def _log(self, type: str, message: str, **extra) -> None:
        if self.monitor is not None:
            self.monitor.add_log(type, "github", message, **extra)

    def first_page(self) -> List[Repo]:
        self.page = 0
        self.has_more = True
        return self.load_more()

    def load_more(self) -> List[Repo]:
        if self.loading or not self.has_more:
            return []
        self.loading = True
        next_page = self.page + 1
        started = time.monotonic()
        self._log("api", f"Loading more plugins (page {next_page})")
        try:
            repos = self._fetch(self.query, self.sort, next_page, token=self.token, timeout=self.timeout)
        except SearchError as e:
            self._log("error", f"Failed to load plugins: {e}", status=e.status)
            return []
        finally:
            self.loading = False
        if not repos:
            self.has_more = False
            self._log("system", "No more plugins to load")
            return []
        self.page = next_page
        self._log("api", f"Loaded {len(repos)} new plugins", status=200, duration=(time.monotonic() - started) * 1000)
        return repos
