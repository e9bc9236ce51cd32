"""
Sync State Machine
idle -> fetching -> securing -> analyzing -> complete, with error reachable
from every non-terminal state. Each transition is written to sync_status.
"""
import logging
from enum import Enum
from typing import Dict, Optional, Set

from supabase import Client

from emergent_sync.core.errors import InvalidStateTransition, PersistenceError
from emergent_sync.models.schemas.sync import Provider
from emergent_sync.services.sync.persistence import write_sync_status

logger = logging.getLogger(__name__)


class SyncState(str, Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    SECURING = "securing"
    ANALYZING = "analyzing"
    COMPLETE = "complete"
    ERROR = "error"


TERMINAL_STATES = {SyncState.COMPLETE, SyncState.ERROR}

# securing -> complete covers empty cycles and providers with nothing to analyze
ALLOWED_TRANSITIONS: Dict[SyncState, Set[SyncState]] = {
    SyncState.IDLE: {SyncState.FETCHING, SyncState.ERROR},
    SyncState.FETCHING: {SyncState.SECURING, SyncState.ERROR},
    SyncState.SECURING: {SyncState.ANALYZING, SyncState.COMPLETE, SyncState.ERROR},
    SyncState.ANALYZING: {SyncState.COMPLETE, SyncState.ERROR},
    SyncState.COMPLETE: set(),
    SyncState.ERROR: set(),
}


def can_transition(current: SyncState, target: SyncState) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


class SyncStateMachine:
    """
    Tracks one cycle for one (user, provider) and mirrors it to sync_status.

    sync_status is one row per user, last write wins: with two providers syncing
    concurrently the row shows whichever wrote last.
    """

    def __init__(self, supabase: Client, user_id: str, provider: Provider):
        self.supabase = supabase
        self.user_id = user_id
        self.provider = provider
        self.state = SyncState.IDLE
        self.error_message: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    def transition(self, target: SyncState, error_message: Optional[str] = None) -> None:
        """
        Move to `target` and persist it.

        Raises:
            InvalidStateTransition: target not reachable from the current state
            PersistenceError: sync_status write failed
        """
        if not can_transition(self.state, target):
            raise InvalidStateTransition(
                f"Invalid sync transition {self.state.value} -> {target.value} "
                f"for user {self.user_id} ({self.provider.value})"
            )

        write_sync_status(self.supabase, self.user_id, target.value, self.provider, error_message)
        logger.info(f"🔁 Sync [{self.provider.value}] user {self.user_id}: {self.state.value} -> {target.value}")
        self.state = target
        self.error_message = error_message

    def fail(self, error_message: str) -> None:
        """
        Move to error from any non-terminal state.

        A failed status write is logged, not raised: the caller is already
        handling the error that caused this.
        """
        if self.is_terminal:
            logger.warning(f"Sync already {self.state.value} for user {self.user_id}, ignoring error: {error_message}")
            return

        try:
            self.transition(SyncState.ERROR, error_message)
        except PersistenceError as e:
            logger.error(f"❌ Could not record sync error for user {self.user_id}: {e}")
            self.state = SyncState.ERROR
            self.error_message = error_message
