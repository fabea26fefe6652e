# backend/bharatcrm/models/__init__.py
from bharatcrm.models.organization import Organization
from bharatcrm.models.user import User, UserRole
from bharatcrm.models.lead import Lead, LeadActivity, LEAD_STATUSES
from bharatcrm.models.integration import (
    PlatformIntegration,
    IntegrationSyncLog,
    CampaignAssignment,
    LeadFormAssignment,
)
from bharatcrm.models.recording import CallRecording, DeletedRecordingFile, DriveSyncSettings, AIConfig
from bharatcrm.models.approval import SubscriptionApproval, Subscription

__all__ = [
    'Organization',
    'User',
    'UserRole',
    'Lead',
    'LeadActivity',
    'LEAD_STATUSES',
    'PlatformIntegration',
    'IntegrationSyncLog',
    'CampaignAssignment',
    'LeadFormAssignment',
    'CallRecording',
    'DeletedRecordingFile',
    'DriveSyncSettings',
    'AIConfig',
    'SubscriptionApproval',
    'Subscription',
]
