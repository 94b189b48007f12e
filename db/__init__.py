"""Database helpers for the acquisition engine."""

from db.pending_selections import PendingSelectionStore
from db.slskd_users import ReputationRecord, SlskdUserStore

__all__ = ["PendingSelectionStore", "ReputationRecord", "SlskdUserStore"]
