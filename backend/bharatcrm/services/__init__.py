from bharatcrm.services.assignment_service import AssignmentResult, assign_lead
from bharatcrm.services.duplicate_service import DuplicateMatch, check_duplicate
from bharatcrm.services.meta_service import MetaLeadAdsService, MetaAPIError
from bharatcrm.services.google_drive_service import GoogleDriveService, GoogleDriveError
from bharatcrm.services.ai_providers import AIProviderError, create_ai_provider

__all__ = [
    'AssignmentResult',
    'assign_lead',
    'DuplicateMatch',
    'check_duplicate',
    'MetaLeadAdsService',
    'MetaAPIError',
    'GoogleDriveService',
    'GoogleDriveError',
    'AIProviderError',
    'create_ai_provider',
]
