"""Card provisioning."""

from card_provisioning.provisioning.cards import CardService
from card_provisioning.provisioning.flow import FundingFlow, FundingOutcome, TrackedAttempt
from card_provisioning.provisioning.orchestrator import CardProvisioner

__all__ = ["CardProvisioner", "CardService", "FundingFlow", "FundingOutcome", "TrackedAttempt"]
