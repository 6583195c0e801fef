"""GitHub source fetcher for n8n-rag-sync.

Lists repository trees through the GitHub API and downloads raw files for the
node documentation tree and the node definition sources.
"""

import asyncio
import logging
from typing import List, Dict, Any, Optional

import aiohttp

from sources.loader import SourceLoader, TreeSourceConfig
from .errors import FetchError
from .parsers import NodeSourceInfo, parse_node_source, node_type_from_source, node_type_from_doc_path

logger = logging.getLogger(__name__)

GITHUB_API = "https://api.github.com"
RAW_CONTENT_BASE = "https://raw.githubusercontent.com"
RAW_BRANCHES = ("main", "master")
DEFAULT_USER_AGENT = "n8n-rag-sync"


class GitHubFetcher:
    """Asynchronous fetcher for GitHub-hosted node documentation and sources."""

    def __init__(self,
                 token: Optional[str] = None,
                 user_agent: str = DEFAULT_USER_AGENT,
                 docs_source: Optional[TreeSourceConfig] = None,
                 nodes_source: Optional[TreeSourceConfig] = None,
                 request_timeout: int = 30,
                 session: Optional[aiohttp.ClientSession] = None):
        """Initialize fetcher.

        Args:
            token: Optional GitHub token sent as a bearer credential
            user_agent: User agent string sent with every request
            docs_source: Documentation tree origin (defaults to sources/n8n-docs.yaml)
            nodes_source: Node source tree origin (defaults to sources/n8n-nodes.yaml)
            request_timeout: Request timeout in seconds
            session: Existing session to use instead of creating one
        """
        loader = SourceLoader()
        self.token = token
        self.user_agent = user_agent
        self.docs_source = docs_source or loader.load_tree_source("n8n-docs")
        self.nodes_source = nodes_source or loader.load_tree_source("n8n-nodes")
        self.request_timeout = request_timeout
        self.session = session
        self._owns_session = session is None
        self._trees: Dict[str, List[Dict[str, Any]]] = {}

    async def __aenter__(self):
        """Async context manager entry."""
        if self.session is None:
            timeout = aiohttp.ClientTimeout(total=self.request_timeout)
            self.session = aiohttp.ClientSession(timeout=timeout)
            self._owns_session = True
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.close()

    async def close(self):
        """Close the fetcher session if this fetcher created it."""
        if self.session and self._owns_session:
            await self.session.close()
            self.session = None

    def _headers(self, api: bool = True) -> Dict[str, str]:
        headers = {"User-Agent": self.user_agent}
        if api:
            headers["Accept"] = "application/vnd.github.v3+json"
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    async def _get(self, url: str, api: bool = True, as_json: bool = True):
        """GET a URL and return its JSON or text body. Raises FetchError on non-2xx."""
        if self.session is None:
            await self.__aenter__()

        async with self.session.get(url, headers=self._headers(api)) as response:
            if response.status < 200 or response.status >= 300:
                body = await response.text()
                raise FetchError(f"GitHub request failed with HTTP {response.status} for {url}",
                                 status=response.status, url=url, body=body)
            if as_json:
                return await response.json(content_type=None)
            return await response.text()

    async def resolve_default_branch(self, repo: str) -> str:
        data = await self._get(f"{GITHUB_API}/repos/{repo}")
        return (data or {}).get("default_branch") or "main"

    async def fetch_tree(self, repo: str, prefix: str) -> List[Dict[str, Any]]:
        """List the blobs of a repository under a path prefix.

        The full recursive listing is fetched once per repository and reused
        for every prefix.
        """
        if repo not in self._trees:
            branch = await self.resolve_default_branch(repo)
            data = await self._get(f"{GITHUB_API}/repos/{repo}/git/trees/{branch}?recursive=1")
            self._trees[repo] = list((data or {}).get("tree") or [])
            logger.debug(f"Listed {len(self._trees[repo])} tree entries for {repo}@{branch}")

        return [
            item for item in self._trees[repo]
            if item.get("type") == "blob" and str(item.get("path", "")).startswith(prefix)
        ]

    async def fetch_raw_file(self, repo: str, path: str) -> str:
        """Download a file, trying the ``main`` branch before ``master``."""
        last_error: Optional[FetchError] = None
        for branch in RAW_BRANCHES:
            url = f"{RAW_CONTENT_BASE}/{repo}/{branch}/{path}"
            try:
                return await self._get(url, api=False, as_json=False)
            except FetchError as e:
                last_error = e
                logger.debug(f"Raw fetch failed on {branch} for {repo}/{path}: HTTP {e.status}")

        status = last_error.status if last_error else None
        raise FetchError(f"Failed to fetch {repo}/{path}: {status}", status=status,
                         url=last_error.url if last_error else None,
                         body=last_error.body if last_error else None)

    async def fetch_docs(self) -> Dict[str, str]:
        """Fetch markdown documentation keyed by node type.

        Returns:
            Mapping of node type to raw markdown. Tree and file failures are
            logged and skipped.
        """
        source = self.docs_source
        docs: Dict[str, str] = {}

        for prefix in source.path_prefixes:
            try:
                tree = await self.fetch_tree(source.repo, prefix)
            except Exception as e:
                logger.warning(f"Failed to fetch tree for {prefix}: {e}")
                continue

            for item in tree:
                path = item["path"]
                if not source.matches(path):
                    continue
                node_type = node_type_from_doc_path(path, source.node_type_prefixes)
                if not node_type:
                    continue
                try:
                    docs[node_type] = await self.fetch_raw_file(source.repo, path)
                except Exception as e:
                    logger.warning(f"Failed to fetch doc {path}: {e}")

        logger.info(f"Fetched {len(docs)} documentation files from {source.repo}")
        return docs

    async def _fetch_node_source(self, path: str) -> NodeSourceInfo:
        raw = await self.fetch_raw_file(self.nodes_source.repo, path)
        prefix = self.nodes_source.node_type_prefixes[0] if self.nodes_source.node_type_prefixes else ""
        return parse_node_source(raw, node_type_from_source(raw, path, prefix))

    async def fetch_node_sources(self) -> Dict[str, NodeSourceInfo]:
        """Fetch and parse node definition sources keyed by node type.

        Files are fetched in fixed-size batches with a pause between batches.
        Per-file failures are logged and skipped.
        """
        source = self.nodes_source
        infos: Dict[str, NodeSourceInfo] = {}

        files: List[str] = []
        for prefix in source.path_prefixes:
            try:
                tree = await self.fetch_tree(source.repo, prefix)
            except Exception as e:
                logger.error(f"Failed to fetch node source tree {prefix}: {e}")
                continue
            files.extend(item["path"] for item in tree if source.matches(item["path"]))

        for start in range(0, len(files), source.batch_size):
            batch = files[start:start + source.batch_size]
            results = await asyncio.gather(
                *(self._fetch_node_source(path) for path in batch),
                return_exceptions=True
            )

            for path, result in zip(batch, results):
                if isinstance(result, Exception):
                    logger.warning(f"Failed to process {path}: {result}")
                    continue
                infos[result.node_type] = result

            if start + source.batch_size < len(files):
                await asyncio.sleep(source.batch_delay)

        logger.info(f"Parsed {len(infos)} node sources from {source.repo}")
        return infos
