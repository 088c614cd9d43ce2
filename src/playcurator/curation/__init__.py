"""Curation module: cleaning, slot placement, reconciliation, scheduler and API clients."""

from playcurator.curation.cleaner import TrackCleaner
from playcurator.curation.estimator import CurationEstimator
from playcurator.curation.orchestrator import CurationComputation, PlaylistOrchestrator
from playcurator.curation.reconcile import perform_smart_update
from playcurator.curation.scheduler import CurationScheduler
from playcurator.curation.slots import SlotManager
from playcurator.curation.suggestions import SuggestionEngine

__all__ = [
    "CurationComputation",
    "CurationEstimator",
    "CurationScheduler",
    "PlaylistOrchestrator",
    "SlotManager",
    "SuggestionEngine",
    "TrackCleaner",
    "perform_smart_update",
]
