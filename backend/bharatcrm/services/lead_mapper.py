# backend/bharatcrm/services/lead_mapper.py
"""
Lead data transformation.

Platform clients produce `LeadData`; `map_lead_data` turns it into a
`MappedLead` ready for assignment and insertion. The JSON columns on the lead
(integration_metadata, custom_fields) and on the integration (credentials,
config) are narrowed through the typed models below at this boundary.
"""

from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from bharatcrm.utils.validators import EMAIL_REGEX


# ==================== Integration JSON bags ====================

class MetaCredentials(BaseModel):
    model_config = ConfigDict(extra="allow")

    access_token: Optional[str] = None
    app_secret: Optional[str] = None


class MetaConfig(BaseModel):
    model_config = ConfigDict(extra="allow")

    ad_account_id: Optional[str] = None
    selected_forms: List[str] = Field(default_factory=list)
    selected_campaigns: List[str] = Field(default_factory=list)


# ==================== Lead JSON bags ====================

class CampaignData(BaseModel):
    model_config = ConfigDict(extra="allow")

    campaign_id: Optional[str] = None
    campaign_name: Optional[str] = None
    ad_set_id: Optional[str] = None
    ad_id: Optional[str] = None
    creative_id: Optional[str] = None


class IntegrationMetadata(BaseModel):
    """Provenance stored on integration leads; routing reads form_id and campaign_id."""
    model_config = ConfigDict(extra="allow")

    campaign_id: Optional[str] = None
    campaign_name: Optional[str] = None
    ad_set_id: Optional[str] = None
    ad_id: Optional[str] = None
    creative_id: Optional[str] = None
    form_id: Optional[str] = None
    page_id: Optional[str] = None
    ad_name: Optional[str] = None
    created_time: Optional[Any] = None
    field_data: Optional[Dict[str, str]] = None


class CustomFields(BaseModel):
    model_config = ConfigDict(extra="allow")

    company: Optional[str] = None


class LeadData(BaseModel):
    """Lead as extracted from a platform, before CRM mapping."""
    name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    company: Optional[str] = None

    external_id: str
    campaign_data: Optional[CampaignData] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)

    created_at: Optional[str] = None


class MappedLead(BaseModel):
    org_id: Optional[int] = None
    integration_id: Optional[int] = None
    external_id: Optional[str] = None

    name: str = ""
    email: Optional[str] = None
    phone: Optional[str] = None
    source: str = "manual"
    status: str = "new"

    custom_fields: CustomFields = Field(default_factory=CustomFields)
    integration_metadata: Optional[IntegrationMetadata] = None

    # set by the assignment resolver
    assigned_to: Optional[int] = None
    created_by: Optional[int] = None

    def to_lead_kwargs(self) -> Dict[str, Any]:
        """Column values for the Lead model."""
        data = self.model_dump(exclude={"custom_fields", "integration_metadata"})
        data["custom_fields"] = self.custom_fields.model_dump(exclude_none=True)
        data["integration_metadata"] = (
            self.integration_metadata.model_dump(exclude_none=True)
            if self.integration_metadata is not None
            else None
        )
        return data


SOURCE_MAP = {
    "facebook": "facebook",
    "whatsapp": "whatsapp",
    "linkedin": "linkedin",
    "instagram": "instagram",
}


def map_lead_data(lead_data: LeadData, org_id: Optional[int], integration_id: Optional[int]) -> MappedLead:
    """Map platform lead data to the CRM lead shape."""
    metadata: Dict[str, Any] = {}

    if lead_data.campaign_data:
        metadata.update(lead_data.campaign_data.model_dump(exclude_none=True))
        # empty strings carry no routing information
        metadata = {k: v for k, v in metadata.items() if v not in ("", None)}

    metadata.update(lead_data.metadata or {})

    custom_fields = CustomFields(company=lead_data.company) if lead_data.company else CustomFields()

    return MappedLead(
        org_id=org_id,
        integration_id=integration_id,
        external_id=lead_data.external_id,
        name=(lead_data.name or "").strip(),
        email=(lead_data.email or "").strip() or None,
        phone=(lead_data.phone or "").strip() or None,
        source="manual",
        status="new",
        custom_fields=custom_fields,
        integration_metadata=IntegrationMetadata(**metadata) if metadata else None,
    )


def get_source_from_platform(platform: str) -> str:
    return SOURCE_MAP.get((platform or "").lower(), "manual")


def validate_mapped_lead(lead: MappedLead) -> Tuple[bool, List[str]]:
    """
    Check a mapped lead before insertion.

    Returns:
        Tuple of (is_valid, errors)
    """
    errors: List[str] = []

    if not lead.name or not lead.name.strip():
        errors.append("Lead name is required")

    if not lead.email and not lead.phone:
        errors.append("Lead must have either email or phone")

    if lead.email and not EMAIL_REGEX.match(lead.email):
        errors.append("Invalid email format")

    if not lead.org_id:
        errors.append("Organization ID is required")

    if not lead.integration_id:
        errors.append("Integration ID is required")

    if not lead.external_id:
        errors.append("External ID is required")

    return len(errors) == 0, errors
