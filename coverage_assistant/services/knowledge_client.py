"""HTTP client for the network knowledge services.

* **NPI Registry** (``npi``): provider lookup, https://npiregistry.cms.hhs.gov/api/
* **PubMed E-utilities** (``pubmed``): esearch + esummary
* **CMS coverage server** (``cms_mcp``): JSON-RPC ``tools/call`` for
  ``search_ncds`` / ``search_lcds``

Every request goes through the shared ``ResilienceGovernor`` under the
dependency name above, and every lookup is cached in the ``CacheManager``
cache for that data set (``npi``, ``pubmed``, ``ncd``, ``lcd``).  HTTP
failures are classified here into ``RetryableTransportError`` (timeouts,
network errors, 429, 5xx) and ``NonRetryableTransportError`` (other 4xx,
malformed responses) so the governor knows what to retry.
"""

from __future__ import annotations

import itertools
import json
import logging
from typing import Any

import httpx

from coverage_assistant import config
from coverage_assistant.errors import NonRetryableTransportError, RetryableTransportError
from coverage_assistant.services.cache import CacheManager
from coverage_assistant.services.resilience import ResilienceGovernor

logger = logging.getLogger(__name__)

NPI = "npi"
PUBMED = "pubmed"
CMS_MCP = "cms_mcp"

MAX_NPI_RESULTS = 20
MAX_PUBMED_RESULTS = 10
PUBMED_COVERAGE_FILTER = " AND (Medicare OR coverage OR medical necessity OR clinical evidence)"


class KnowledgeClient:
    """Governed, cached access to the network knowledge services."""

    def __init__(
        self,
        governor: ResilienceGovernor,
        caches: CacheManager,
        *,
        http: httpx.Client | None = None,
        npi_url: str | None = None,
        pubmed_url: str | None = None,
        coverage_url: str | None = None,
        ncbi_api_key: str | None = None,
    ):
        self._governor = governor
        self._caches = caches
        self._http = http or httpx.Client(
            timeout=config.HTTP_TIMEOUT_SECONDS,
            headers={"User-Agent": "coverage-assistant/1.0"},
        )
        self._npi_url = npi_url or config.NPI_REGISTRY_URL
        self._pubmed_url = (pubmed_url or config.PUBMED_BASE_URL).rstrip("/")
        self._coverage_url = coverage_url or config.CMS_COVERAGE_URL
        self._ncbi_api_key = ncbi_api_key if ncbi_api_key is not None else config.NCBI_API_KEY
        self._rpc_ids = itertools.count(1)

    # ── Internal helpers ─────────────────────────────────────────────

    def _send(
        self,
        dependency: str,
        method: str,
        url: str,
        *,
        params: dict[str, Any] | None = None,
        json_body: dict[str, Any] | None = None,
    ) -> Any:
        """One HTTP attempt, with failures mapped onto the transport taxonomy."""
        try:
            response = self._http.request(method, url, params=params, json=json_body)
        except httpx.TimeoutException as exc:
            raise RetryableTransportError(
                f"{dependency} request timed out: {exc}", dependency=dependency,
            ) from exc
        except httpx.TransportError as exc:
            raise RetryableTransportError(
                f"{dependency} network error: {exc}", dependency=dependency,
            ) from exc

        status = response.status_code
        if status == 429 or status >= 500:
            raise RetryableTransportError(
                f"{dependency} returned {status}", dependency=dependency, status_code=status,
            )
        if status >= 400:
            raise NonRetryableTransportError(
                f"{dependency} returned {status}: {response.text[:200]}",
                dependency=dependency, status_code=status,
            )
        try:
            return response.json()
        except ValueError as exc:
            raise NonRetryableTransportError(
                f"{dependency} returned invalid JSON", dependency=dependency, status_code=status,
            ) from exc

    def _request(
        self,
        dependency: str,
        operation: str,
        method: str,
        url: str,
        **kwargs: Any,
    ) -> Any:
        return self._governor.call(
            dependency,
            lambda: self._send(dependency, method, url, **kwargs),
            operation=operation,
        )

    # ── NPI Registry ─────────────────────────────────────────────────

    def search_providers(
        self,
        *,
        name: str | None = None,
        state: str | None = None,
        city: str | None = None,
        specialty: str | None = None,
        npi: str | None = None,
        limit: int = 10,
    ) -> list[dict[str, Any]]:
        """Search the NPI registry and return normalised provider records."""
        params: dict[str, Any] = {"version": "2.1"}
        if npi:
            params["number"] = npi.strip()
        if name:
            parts = name.strip().split()
            if len(parts) >= 2:
                params["first_name"] = parts[0]
                params["last_name"] = " ".join(parts[1:])
            else:
                params["last_name"] = name.strip()
        if state:
            params["state"] = state.strip().upper()
        if city:
            params["city"] = city.strip()
        if specialty:
            params["taxonomy_description"] = specialty.strip()
        params["limit"] = max(1, min(limit, MAX_NPI_RESULTS))

        def load() -> list[dict[str, Any]]:
            data = self._request(NPI, "search_providers", "GET", self._npi_url, params=params)
            if not isinstance(data, dict):
                return []
            if data.get("Errors"):
                message = "; ".join(str(e.get("description", e)) for e in data["Errors"])
                raise NonRetryableTransportError(
                    f"NPI registry rejected the query: {message}", dependency=NPI,
                )
            return [normalize_provider(r) for r in data.get("results", [])]

        return self._caches.get(NPI).get_or_set(params, load)

    # ── PubMed ───────────────────────────────────────────────────────

    def _eutils_params(self, **params: Any) -> dict[str, Any]:
        if self._ncbi_api_key:
            params["api_key"] = self._ncbi_api_key
        return params

    def search_pubmed(
        self,
        query: str,
        *,
        condition: str | None = None,
        intervention: str | None = None,
        limit: int = 5,
    ) -> list[dict[str, Any]]:
        """Search PubMed for coverage-relevant clinical evidence."""
        terms = [query.strip()]
        if condition:
            terms.append(condition.strip())
        if intervention:
            terms.append(intervention.strip())
        term = " AND ".join(t for t in terms if t) + PUBMED_COVERAGE_FILTER
        limit = max(1, min(limit, MAX_PUBMED_RESULTS))
        cache_params = {"term": term, "limit": limit}

        def load() -> list[dict[str, Any]]:
            search = self._request(
                PUBMED, "esearch", "GET", f"{self._pubmed_url}/esearch.fcgi",
                params=self._eutils_params(
                    db="pubmed", term=term, retmax=limit, retmode="json", sort="relevance",
                ),
            )
            ids = (search or {}).get("esearchresult", {}).get("idlist", [])
            if not ids:
                return []
            summary = self._request(
                PUBMED, "esummary", "GET", f"{self._pubmed_url}/esummary.fcgi",
                params=self._eutils_params(db="pubmed", id=",".join(ids), retmode="json"),
            )
            result = (summary or {}).get("result", {})
            return [normalize_article(result[pmid]) for pmid in ids if pmid in result]

        return self._caches.get(PUBMED).get_or_set(cache_params, load)

    # ── CMS coverage server (JSON-RPC) ───────────────────────────────

    def _call_coverage_tool(self, tool_name: str, arguments: dict[str, Any]) -> list[dict[str, Any]]:
        body = {
            "jsonrpc": "2.0",
            "id": f"req_{next(self._rpc_ids)}",
            "method": "tools/call",
            "params": {
                "name": tool_name,
                "arguments": {k: v for k, v in arguments.items() if v is not None},
            },
        }
        response = self._request(
            CMS_MCP, tool_name, "POST", self._coverage_url, json_body=body,
        )
        if not isinstance(response, dict):
            return []
        if response.get("error"):
            error = response["error"]
            raise NonRetryableTransportError(
                f"Coverage server error {error.get('code')}: {error.get('message')}",
                dependency=CMS_MCP,
            )
        content = (response.get("result") or {}).get("content") or []
        text = content[0].get("text") if content and isinstance(content[0], dict) else None
        if not text:
            return []
        try:
            parsed = json.loads(text)
        except ValueError:
            logger.warning("Coverage server returned non-JSON content for %s", tool_name)
            return []
        return parsed if isinstance(parsed, list) else []

    def search_ncds(
        self,
        query: str,
        *,
        cpt_code: str | None = None,
        limit: int = 5,
    ) -> list[dict[str, Any]]:
        params = {"query": query, "cpt_code": cpt_code, "limit": limit}
        return self._caches.get("ncd").get_or_set(
            params, lambda: self._call_coverage_tool("search_ncds", params),
        )

    def search_lcds(
        self,
        query: str,
        *,
        cpt_code: str | None = None,
        state: str | None = None,
        limit: int = 5,
    ) -> list[dict[str, Any]]:
        params = {"query": query, "cpt_code": cpt_code, "state": state, "limit": limit}
        return self._caches.get("lcd").get_or_set(
            params, lambda: self._call_coverage_tool("search_lcds", params),
        )

    def close(self) -> None:
        self._http.close()


# ── Normalisation ───────────────────────────────────────────────────


def normalize_provider(raw: dict[str, Any]) -> dict[str, Any]:
    """Flatten an NPI registry result into the record the tools return."""
    basic = raw.get("basic", {})
    first = basic.get("first_name", "")
    last = basic.get("last_name", "")
    credential = basic.get("credential", "")
    if first or last:
        full = " ".join(p for p in (first, last) if p)
        if credential:
            full = f"{full}, {credential}"
    else:
        full = basic.get("organization_name") or basic.get("name", "")

    taxonomies = raw.get("taxonomies", [])
    primary = next((t for t in taxonomies if t.get("primary")), taxonomies[0] if taxonomies else {})

    addresses = raw.get("addresses", [])
    location = next(
        (a for a in addresses if a.get("address_purpose") == "LOCATION"),
        addresses[0] if addresses else {},
    )
    return {
        "npi": str(raw.get("number", "")),
        "name": {"first": first, "last": last, "credential": credential, "full": full},
        "specialty": {"primary": primary.get("desc", ""), "code": primary.get("code", "")},
        "address": {
            "line1": location.get("address_1", ""),
            "city": location.get("city", ""),
            "state": location.get("state", ""),
            "postal_code": str(location.get("postal_code", ""))[:5],
        },
        "phone": location.get("telephone_number", ""),
    }


def normalize_article(raw: dict[str, Any]) -> dict[str, Any]:
    pmid = str(raw.get("uid", ""))
    authors = [a.get("name", "") for a in raw.get("authors", [])[:3] if a.get("name")]
    year = str(raw.get("pubdate", ""))[:4]
    doi = next(
        (i.get("value", "") for i in raw.get("articleids", []) if i.get("idtype") == "doi"),
        "",
    )
    title = raw.get("title", "")
    journal = raw.get("source", "")
    author_text = ", ".join(authors) + (" et al" if len(raw.get("authors", [])) > 3 else "")
    return {
        "pmid": pmid,
        "title": title,
        "authors": authors,
        "journal": journal,
        "year": year,
        "doi": doi,
        "url": f"https://pubmed.ncbi.nlm.nih.gov/{pmid}/",
        "citation": f"{author_text}. {title} {journal}. {year}. PMID: {pmid}".strip(". "),
    }
