"""
Procore REST API Client
Authenticated, paginated GETs against the Procore REST API

ERROR HANDLING:
- 401: one forced token refresh, one retry; a second 401 is raised
- 403 / 404: fatal, raised immediately with a descriptive message
- 429 / 5xx: exponential back-off (Retry-After honoured), then raised
- Everything else non-2xx: raised with status and body attached
- Network errors (httpx) propagate unchanged

Every request carries an explicit timeout (PROCORE_REQUEST_TIMEOUT).
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx

from hbsync.core.circuit_breakers import procore_retrying
from hbsync.core.config import Settings
from hbsync.core.exceptions import (
    ProcoreAPIError,
    ProcoreAuthError,
    ProcoreNotFoundError,
    ProcorePermissionError,
    ProcoreRateLimitError,
    ProcoreServerError,
)
from hbsync.models.schemas import Token

logger = logging.getLogger(__name__)


# ============================================================================
# RESOURCES
# ============================================================================

@dataclass(frozen=True)
class ResourceDescriptor:
    """One Procore list endpoint."""
    name: str
    path: str
    params: Dict[str, Any] = field(default_factory=dict)
    paginated: bool = True


def company_users(company_id: Any) -> ResourceDescriptor:
    return ResourceDescriptor("users", f"/rest/v1.3/companies/{company_id}/users")


def company_projects(company_id: Any) -> ResourceDescriptor:
    return ResourceDescriptor("projects", "/rest/v1.0/projects", {"company_id": company_id})


def project_cost_codes(project_id: Any) -> ResourceDescriptor:
    return ResourceDescriptor("cost_codes", "/rest/v1.0/cost_codes", {"project_id": project_id})


def project_commitments(project_id: Any) -> ResourceDescriptor:
    return ResourceDescriptor("commitments", "/rest/v1.0/work_order_contracts", {"project_id": project_id})


def project_budget_line_items(project_id: Any) -> ResourceDescriptor:
    return ResourceDescriptor("budgets", "/rest/v1.0/budget_line_items", {"project_id": project_id})


def project_change_events(project_id: Any) -> ResourceDescriptor:
    return ResourceDescriptor("change_events", "/rest/v1.0/change_events", {"project_id": project_id})


class Page(list):
    """Records of one response; `total` is the Total header when Procore sends it."""

    def __init__(self, records=(), total: Optional[int] = None):
        super().__init__(records)
        self.total = total


# ============================================================================
# ERROR CLASSIFICATION
# ============================================================================

def _retry_after(response: httpx.Response) -> Optional[float]:
    value = response.headers.get("Retry-After")
    if value is None:
        return None
    try:
        return max(float(value), 0.0)
    except ValueError:
        return None


def raise_for_status(response: httpx.Response, url: str) -> None:
    """Raise the ProcoreAPIError subclass matching a non-2xx response."""
    status = response.status_code
    if 200 <= status < 300:
        return

    body = response.text
    if status == 401:
        raise ProcoreAuthError(status, body, url)
    if status == 403:
        raise ProcorePermissionError(status, body, url)
    if status == 404:
        raise ProcoreNotFoundError(status, body, url)
    if status == 429:
        raise ProcoreRateLimitError(status, body, url, retry_after=_retry_after(response))
    if status >= 500:
        raise ProcoreServerError(status, body, url)
    raise ProcoreAPIError(status, body, url)


def _parse_records(response: httpx.Response, url: str) -> List[Any]:
    try:
        payload = response.json()
    except ValueError:
        raise ProcoreAPIError(response.status_code, f"Invalid JSON: {response.text[:200]}", url)

    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict) and isinstance(payload.get("data"), list):
        return payload["data"]
    return [payload]


def _total(response: httpx.Response) -> Optional[int]:
    value = response.headers.get("Total")
    try:
        return int(value) if value is not None else None
    except ValueError:
        return None


# ============================================================================
# CLIENT
# ============================================================================

class ProcoreClient:
    """
    Remote fetcher for the sync orchestrator.

    Usage:
        client = ProcoreClient(http_client, token_manager, settings)
        users = await client.fetch_all(company_users(settings.procore_company_id))
    """

    def __init__(self, http_client: httpx.AsyncClient, token_manager, settings: Settings):
        self.http_client = http_client
        self.token_manager = token_manager
        self.settings = settings

    async def fetch_page(self, resource: ResourceDescriptor, token: Token, page: Optional[int] = None) -> Page:
        """
        One authenticated GET.

        Args:
            resource: Endpoint to call
            token: Token whose access token is sent as the bearer
            page: 1-based page number for paginated resources

        Returns:
            Parsed records of the page

        Raises:
            ProcoreAPIError (subclass per status), httpx.HTTPError
        """
        url = f"{self.settings.procore_base_url}{resource.path}"
        params = dict(resource.params)
        if resource.paginated and page is not None:
            params["page"] = page
            params["per_page"] = self.settings.procore_page_size
        headers = {
            "Authorization": f"Bearer {token.access_token}",
            "Procore-Company-Id": str(self.settings.procore_company_id),
        }

        async for attempt in procore_retrying(self.settings.procore_max_retries, self.settings.procore_retry_backoff):
            with attempt:
                response = await self.http_client.get(
                    url,
                    params=params,
                    headers=headers,
                    timeout=self.settings.procore_request_timeout,
                )
                raise_for_status(response, url)

        records = _parse_records(response, url)
        logger.debug(f"GET {resource.path} page={page} -> {len(records)} records")
        return Page(records, total=_total(response))

    async def get(self, resource: ResourceDescriptor, page: Optional[int] = None) -> Page:
        """
        fetch_page with a valid token, retrying exactly once after a 401.

        Raises:
            ProcoreAuthError: The retried request was rejected too
            ProcorePermissionError, ProcoreNotFoundError: Fatal, not retried
        """
        token = await self.token_manager.get_valid_token()
        try:
            return await self.fetch_page(resource, token, page)
        except ProcoreAuthError:
            logger.warning(f"⚠️  401 from Procore for {resource.path}, refreshing token and retrying once")
            token = await self.token_manager.force_refresh(token.access_token)
            return await self.fetch_page(resource, token, page)
        except (ProcorePermissionError, ProcoreNotFoundError) as e:
            logger.error(f"❌ {e}")
            raise

    async def fetch_all(self, resource: ResourceDescriptor) -> List[Any]:
        """
        Every record of a resource, following page/per_page pagination.

        Stops on a short page, or once the Total header count is reached.
        """
        if not resource.paginated:
            return list(await self.get(resource))

        records: List[Any] = []
        page = 1
        while True:
            batch = await self.get(resource, page)
            records.extend(batch)
            if len(batch) < self.settings.procore_page_size:
                break
            if batch.total is not None and len(records) >= batch.total:
                break
            page += 1

        logger.info(f"Fetched {len(records)} {resource.name} records ({page} page(s))")
        return records
