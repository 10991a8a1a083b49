"""
Web Tools

Search the web and read pages. Uses DuckDuckGo HTML search (no API key
required) and httpx for fetching.
"""

import logging
from typing import Any, Dict, List

import httpx
from bs4 import BeautifulSoup
from sqlalchemy.ext.asyncio import AsyncSession

from agents.prompts.llm import call_llm
from config.settings import settings
from tools.registry import ToolConfig, ToolResult, register_tool

logger = logging.getLogger(__name__)

CHROME_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/120.0.0.0 Safari/537.36"
)

SEARCH_ERROR_MESSAGE = "Error fetching search results."
NO_RESULTS_MESSAGE = "No relevant search results found."
MAX_PAGE_CHARS = 8000

SEARCH_SUMMARY_PROMPT = (
    "Based on user query {query} Generate a concise, informative response based on the "
    "following search result:\n\n{search_result}\n\n"
    "Ensure the response is clear and engaging, not more than 50 words."
)


def parse_search_results(html: str, num_results: int) -> List[Dict[str, str]]:
    """Pull title/url/snippet triples out of a DuckDuckGo HTML results page."""
    soup = BeautifulSoup(html, "html.parser")
    results = []

    for item in soup.select(".result"):
        if len(results) >= num_results:
            break

        title_el = item.select_one(".result__title a, .result__a")
        snippet_el = item.select_one(".result__snippet")
        url_el = item.select_one(".result__url")

        title = title_el.get_text(strip=True) if title_el else ""
        snippet = snippet_el.get_text(strip=True) if snippet_el else ""
        if url_el:
            result_url = url_el.get_text(strip=True)
        elif title_el and title_el.get("href"):
            result_url = title_el["href"]
        else:
            result_url = ""

        if title or snippet:
            results.append({"title": title, "url": result_url, "snippet": snippet})

    return results


# =============================================================================
# search_web
# =============================================================================

async def execute_search_web(
    params: Dict[str, Any],
    db: AsyncSession,
    user_id: int,
    context: Dict[str, Any],
) -> ToolResult:
    """Search the web; by default answer from the top result in at most 50 words."""
    query = params.get("query", "").strip()
    if not query:
        return ToolResult(text="Error: Search query is required.")

    num_results = min(max(int(params.get("num_results", 5)), 1), 10)
    summarize = params.get("summarize", True)

    try:
        async with httpx.AsyncClient(
            timeout=15.0,
            follow_redirects=True,
            headers={"User-Agent": CHROME_USER_AGENT},
        ) as client:
            resp = await client.post(settings.WEB_SEARCH_URL, data={"q": query})
            resp.raise_for_status()
    except httpx.HTTPError as e:
        logger.warning(f"Web search failed: {e}")
        return ToolResult(text=SEARCH_ERROR_MESSAGE)

    results = parse_search_results(resp.text, num_results)
    if not results:
        return ToolResult(text=NO_RESULTS_MESSAGE)

    payload = {"type": "web_search_results", "data": results}

    if summarize:
        top = results[0]
        summary = await call_llm(
            system_message="You summarize web search results.",
            user_message=SEARCH_SUMMARY_PROMPT,
            values={"query": query, "search_result": f"{top['title']} ({top['url']})\n{top['snippet']}"},
        )
        if summary.ok:
            return ToolResult(text=summary.data, payload=payload)
        logger.warning(f"Search summary failed, returning raw results: {summary.error}")

    lines = [f"Search results for: {query}\n"]
    for i, r in enumerate(results, 1):
        lines.append(f"{i}. {r['title']}")
        if r["url"]:
            lines.append(f"   URL: {r['url']}")
        if r["snippet"]:
            lines.append(f"   {r['snippet']}")
        lines.append("")
    return ToolResult(text="\n".join(lines), payload=payload)


register_tool(ToolConfig(
    name="search_web",
    description=(
        "Searches the web based on the user query. By default returns a short answer built "
        "from the top result; set summarize to false for the list of titles, URLs and snippets."
    ),
    input_schema={
        "type": "object",
        "properties": {
            "query": {
                "type": "string",
                "description": "The search query"
            },
            "num_results": {
                "type": "integer",
                "description": "Number of results to return (1-10, default 5)"
            },
            "summarize": {
                "type": "boolean",
                "description": "Summarize the top result (default true)"
            },
        },
        "required": ["query"]
    },
    executor=execute_search_web,
    category="web",
))


# =============================================================================
# fetch_webpage
# =============================================================================

async def execute_fetch_webpage(
    params: Dict[str, Any],
    db: AsyncSession,
    user_id: int,
    context: Dict[str, Any],
) -> str:
    """Fetch a webpage and extract its readable text."""
    url = params.get("url", "").strip()
    if not url:
        return "Error: URL is required."

    if not url.startswith(("http://", "https://")):
        url = "https://" + url

    try:
        async with httpx.AsyncClient(
            timeout=30.0,
            follow_redirects=True,
            headers={"User-Agent": CHROME_USER_AGENT},
        ) as client:
            resp = await client.get(url)
            resp.raise_for_status()
    except httpx.HTTPError as e:
        logger.warning(f"Webpage fetch failed for {url}: {e}")
        return f"Error: Failed to fetch {url}: {e}"

    content_type = resp.headers.get("content-type", "")
    if "html" not in content_type and "text" not in content_type:
        return f"Error: URL returned non-HTML content ({content_type}). Only HTML pages are supported."

    soup = BeautifulSoup(resp.text, "html.parser")
    title_el = soup.find("title")
    title = title_el.get_text(strip=True) if title_el else ""

    for tag in soup(["script", "style", "nav", "footer", "aside", "header", "noscript", "svg", "iframe"]):
        tag.decompose()

    lines = [line.strip() for line in soup.get_text(separator="\n").splitlines()]
    text = "\n".join(line for line in lines if line)

    header = [f"URL: {url}"]
    if title:
        header.append(f"Title: {title}")
    if len(text) > MAX_PAGE_CHARS:
        text = text[:MAX_PAGE_CHARS]
        header.append(f"(Truncated to {MAX_PAGE_CHARS} characters)")

    return "\n".join(header) + "\n\n" + text


register_tool(ToolConfig(
    name="fetch_webpage",
    description="Fetch a webpage and extract its text content. Use this to read a specific URL found by search_web.",
    input_schema={
        "type": "object",
        "properties": {
            "url": {
                "type": "string",
                "description": "The URL to fetch (https:// added automatically if missing)"
            },
        },
        "required": ["url"]
    },
    executor=execute_fetch_webpage,
    category="web",
))
