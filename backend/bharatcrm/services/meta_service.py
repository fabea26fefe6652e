# backend/bharatcrm/services/meta_service.py
"""
Meta Lead Ads (Facebook / Instagram) Graph API client.

- Webhook envelope parsing (leadgen change notifications)
- Full lead fetch by leadgen id (the webhook payload carries no field data)
- Form lead polling for manual sync, pages and leadgen forms for the form picker
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

import httpx

from bharatcrm.config import settings
from bharatcrm.services.lead_mapper import CampaignData, LeadData
from bharatcrm.utils.logger import logger
from bharatcrm.utils.retry_logic import RETRYABLE_STATUSES, retry_async

GRAPH_BASE_URL = "https://graph.facebook.com"

LEAD_FIELDS = (
    "id,created_time,field_data,ad_id,ad_name,adset_id,adset_name,"
    "campaign_id,campaign_name,form_id"
)

MAX_PAGE_SCAN = 20


class MetaAPIError(Exception):
    """Graph API returned a non-2xx response."""

    def __init__(self, message: str, status_code: int = 502, details: Any = None):
        super().__init__(message)
        self.status_code = status_code
        self.details = details


def _str_or_none(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    return str(value)


def flatten_field_data(field_data: Optional[List[Dict[str, Any]]]) -> Dict[str, str]:
    """[{name, values: [..]}] -> {name: first value}"""
    out: Dict[str, str] = {}
    for field in field_data or []:
        name = field.get("name")
        values = field.get("values") or []
        if name and values:
            out[name] = str(values[0])
    return out


class MetaLeadAdsService:
    """Graph API access for one integration's access token."""

    def __init__(self, access_token: Optional[str], api_version: Optional[str] = None):
        self.access_token = access_token
        self.api_version = api_version or settings.META_GRAPH_API_VERSION
        self.base_url = f"{GRAPH_BASE_URL}/{self.api_version}"

    # ==================== Webhook ====================

    @staticmethod
    def extract_lead_from_webhook(payload: Any) -> Optional[Dict[str, Optional[str]]]:
        """
        Pull the leadgen change out of a webhook delivery.

        Only the first change of the first entry is read; Meta sends one
        leadgen event per delivery. Returns None when no leadgen_id is present.
        """
        if not isinstance(payload, dict):
            return None

        entries = payload.get("entry") or []
        if not entries or not isinstance(entries[0], dict):
            return None

        changes = entries[0].get("changes") or []
        if not changes or not isinstance(changes[0], dict):
            return None

        value = changes[0].get("value") or {}
        if not isinstance(value, dict) or not value.get("leadgen_id"):
            return None

        return {
            "leadgen_id": _str_or_none(value.get("leadgen_id")),
            "form_id": _str_or_none(value.get("form_id")),
            "page_id": _str_or_none(value.get("page_id")),
            "ad_id": _str_or_none(value.get("ad_id")),
            "adgroup_id": _str_or_none(value.get("adgroup_id")),
            "created_time": value.get("created_time"),
        }

    # ==================== Lead parsing ====================

    @staticmethod
    def parse_graph_lead(
        graph_lead: Dict[str, Any],
        form_id: Optional[str] = None,
        page_id: Optional[str] = None,
    ) -> LeadData:
        """Turn a Graph lead object into LeadData."""
        fields = flatten_field_data(graph_lead.get("field_data"))

        name = fields.get("full_name") or fields.get("first_name") or fields.get("name") or ""
        email = (fields.get("email") or "").strip().lower()
        phone = (fields.get("phone_number") or fields.get("phone") or "").strip()
        company = fields.get("company_name") or fields.get("company") or ""

        campaign = CampaignData(
            campaign_id=_str_or_none(graph_lead.get("campaign_id") or graph_lead.get("adset_id")),
            campaign_name=graph_lead.get("campaign_name") or graph_lead.get("adset_name"),
            ad_set_id=_str_or_none(graph_lead.get("adset_id")),
            ad_id=_str_or_none(graph_lead.get("ad_id")),
        )

        metadata: Dict[str, Any] = {
            "form_id": _str_or_none(form_id or graph_lead.get("form_id")),
            "ad_name": graph_lead.get("ad_name"),
            "created_time": graph_lead.get("created_time"),
            "field_data": fields,
        }
        if page_id:
            metadata["page_id"] = str(page_id)

        return LeadData(
            name=name.strip() or "Unknown",
            email=email or None,
            phone=phone or None,
            company=company or None,
            external_id=str(graph_lead.get("id")),
            campaign_data=campaign,
            metadata={k: v for k, v in metadata.items() if v is not None},
            created_at=graph_lead.get("created_time"),
        )

    # ==================== Graph calls ====================

    async def fetch_lead(self, leadgen_id: str) -> Dict[str, Any]:
        """GET /{leadgen_id} with field data and ad/campaign attribution."""
        if not self.access_token:
            raise MetaAPIError("Integration not connected (missing access token)", status_code=400)

        response = await self._get(
            f"{self.base_url}/{leadgen_id}",
            params={"fields": LEAD_FIELDS, "access_token": self.access_token},
        )
        if response.status_code >= 400:
            details = _error_body(response)
            logger.error(f"[Meta] Lead fetch failed for {leadgen_id}: {response.status_code} {details}")
            raise MetaAPIError("Failed to fetch lead from Meta Graph API", status_code=502, details=details)

        return response.json()

    async def fetch_form_leads(self, form_id: str, since: Optional[datetime] = None) -> List[LeadData]:
        """All leads of a form (following paging.next), optionally since a timestamp."""
        if not self.access_token:
            raise MetaAPIError("Integration not connected (missing access token)", status_code=400)

        params: Optional[Dict[str, Any]] = {
            "fields": LEAD_FIELDS,
            "limit": 100,
            "access_token": self.access_token,
        }
        if since:
            params["filtering"] = (
                f'[{{"field":"time_created","operator":"GREATER_THAN","value":{int(since.timestamp())}}}]'
            )

        url: Optional[str] = f"{self.base_url}/{form_id}/leads"
        leads: List[LeadData] = []

        while url:
            response = await self._get(url, params=params)
            if response.status_code >= 400:
                details = _error_body(response)
                raise MetaAPIError(f"Failed to fetch leads for form {form_id}", status_code=502, details=details)

            data = response.json()
            for graph_lead in data.get("data") or []:
                leads.append(self.parse_graph_lead(graph_lead, form_id=form_id))

            url = (data.get("paging") or {}).get("next")
            # next links already carry the query string
            params = None

        logger.info(f"[Meta] Form {form_id}: fetched {len(leads)} leads")
        return leads

    async def fetch_pages(self) -> List[Dict[str, Any]]:
        """Pages the token can manage (me/accounts), with page access tokens."""
        pages: List[Dict[str, Any]] = []
        url: Optional[str] = f"{self.base_url}/me/accounts"
        params: Optional[Dict[str, Any]] = {
            "fields": "id,name,access_token",
            "limit": 100,
            "access_token": self.access_token,
        }

        for _ in range(MAX_PAGE_SCAN):
            if not url:
                break
            response = await self._get(url, params=params)
            if response.status_code >= 400:
                raise MetaAPIError(
                    f"Failed to fetch pages: {response.status_code}",
                    status_code=502,
                    details=_error_body(response),
                )
            data = response.json()
            pages.extend(data.get("data") or [])
            url = (data.get("paging") or {}).get("next")
            params = None

        return pages

    async def fetch_page_forms(self, page_id: str, page_token: str) -> List[Dict[str, Any]]:
        """Leadgen forms of one page; uses the page token."""
        response = await self._get(
            f"{self.base_url}/{page_id}/leadgen_forms",
            params={"fields": "id,name,status", "access_token": page_token},
        )
        if response.status_code >= 400:
            raise MetaAPIError(
                f"Failed to fetch forms for page {page_id}",
                status_code=response.status_code,
                details=_error_body(response),
            )
        return response.json().get("data") or []

    async def fetch_campaigns(self, ad_account_id: str) -> List[Dict[str, Any]]:
        act_id = ad_account_id if ad_account_id.startswith("act_") else f"act_{ad_account_id}"
        response = await self._get(
            f"{self.base_url}/{act_id}/campaigns",
            params={"fields": "id,name,status", "access_token": self.access_token},
        )
        if response.status_code >= 400:
            raise MetaAPIError(
                "Failed to fetch campaigns",
                status_code=502,
                details=_error_body(response),
            )
        return [
            {"id": c.get("id"), "name": c.get("name"), "status": c.get("status")}
            for c in response.json().get("data") or []
        ]

    async def test_connection(self) -> Dict[str, Any]:
        if not self.access_token:
            return {"success": False, "message": "Missing access_token"}

        try:
            response = await self._get(f"{self.base_url}/me", params={"access_token": self.access_token})
        except httpx.HTTPError as e:
            return {"success": False, "message": str(e)}

        if response.status_code >= 400:
            details = _error_body(response)
            message = (details.get("error") or {}).get("message") if isinstance(details, dict) else None
            return {"success": False, "message": message or "Failed to connect to Facebook API"}

        return {"success": True}

    @retry_async(max_retries=2, base_delay=0.5, max_delay=5.0, retry_statuses=RETRYABLE_STATUSES)
    async def _get(self, url: str, params: Optional[Dict[str, Any]] = None) -> httpx.Response:
        async with httpx.AsyncClient(timeout=30.0) as client:
            return await client.get(url, params=params)


def _error_body(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text
