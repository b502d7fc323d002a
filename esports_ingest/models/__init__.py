from esports_ingest.models.organization import Organization
from esports_ingest.models.player import Player
from esports_ingest.models.tournament import Tournament
from esports_ingest.models.earning import Earning
from esports_ingest.models.transfer import Transfer
from esports_ingest.models.device_credential import DeviceCredential

__all__ = [
    "Organization",
    "Player",
    "Tournament",
    "Earning",
    "Transfer",
    "DeviceCredential",
]
