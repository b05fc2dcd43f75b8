"""
Explicit session context.

A Session is built once at login and handed to every component that needs
to know who is acting and in which workspace. Nothing in the package looks
the current user up ambiently.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Dict, Any
import logging

from .errors import SessionClosedError

logger = logging.getLogger(__name__)


@dataclass
class Session:
    """Identity of the acting user and the workspace being synced."""
    user_id: str
    workspace_id: str
    display_name: Optional[str] = None
    access_token: Optional[str] = None
    started_at: datetime = field(default_factory=datetime.now)
    closed: bool = False

    def ensure_open(self) -> None:
        """Raise SessionClosedError if the session was torn down."""
        if self.closed:
            raise SessionClosedError(
                f"Session for user {self.user_id} in workspace {self.workspace_id} is closed"
            )

    def is_author(self, row: Dict[str, Any]) -> bool:
        """True when the acting user authored the given row."""
        return row.get("author_id") == self.user_id

    def close(self) -> None:
        """Mark the session closed (logout)."""
        if not self.closed:
            self.closed = True
            self.access_token = None
            logger.info(f"Session closed for user {self.user_id}")

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization (token excluded)."""
        return {
            "user_id": self.user_id,
            "workspace_id": self.workspace_id,
            "display_name": self.display_name,
            "started_at": self.started_at.isoformat(),
            "closed": self.closed,
        }
