from .dispatcher import BroadcastDispatcher, CampaignStateError, NoRecipientsError
from .frequency import FrequencyCheck, FrequencyGuard
from .repository import (
    CampaignNotFoundError,
    CampaignRepository,
    InMemoryCampaignRepository,
    PostgresCampaignRepository,
)

__all__ = [
    "BroadcastDispatcher",
    "CampaignNotFoundError",
    "CampaignRepository",
    "CampaignStateError",
    "FrequencyCheck",
    "FrequencyGuard",
    "InMemoryCampaignRepository",
    "NoRecipientsError",
    "PostgresCampaignRepository",
]
