"""
Tagged resource records for workspace data.

Each resource kind the planner syncs maps to a dataclass with a fixed field
set and declared foreign keys. Rows coming back from the remote store are
converted through ResourceKind.from_row(), which drops columns the record
does not declare and rejects rows missing required columns. Joins (for
example a pending edit's requester name) are done as explicit secondary
fetches in compose_pending_edits(), never as nested objects.
"""

from dataclasses import dataclass, field, fields, asdict
from enum import Enum
from typing import Optional, Dict, Any, List, Tuple, Type
import logging

from .errors import RecordShapeError

logger = logging.getLogger(__name__)

# Columns every workspace record carries and which are never edited by users
SYSTEM_FIELDS = ("id", "workspace_id", "author_id", "created_at", "updated_at", "version")


@dataclass
class Record:
    """Common columns of a workspace-scoped, author-owned row."""
    id: str
    workspace_id: str
    author_id: str
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    visibility: Optional[str] = "shared"
    version: Optional[int] = None  # server-assigned, monotonic per row

    def to_row(self) -> Dict[str, Any]:
        """Convert to a plain row dictionary."""
        return asdict(self)


@dataclass
class Note(Record):
    title: str = ""
    content: Optional[str] = None
    date: Optional[str] = None


@dataclass
class Task(Record):
    title: str = ""
    description: Optional[str] = None
    due_date: Optional[str] = None
    priority: Optional[str] = None
    status: Optional[str] = None
    assigned_to: Optional[str] = None


@dataclass
class Goal(Record):
    title: str = ""
    description: Optional[str] = None
    category: Optional[str] = None
    progress: Optional[float] = None
    status: Optional[str] = None
    target_date: Optional[str] = None


@dataclass
class Expense(Record):
    amount: float = 0.0
    date: Optional[str] = None
    description: Optional[str] = None
    category_id: Optional[str] = None
    expense_type: str = "variable"  # fixed | variable | one_time
    finance_category: str = "personal"  # business | personal


@dataclass
class TravelPlan(Record):
    destination: str = ""
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    budget: Optional[float] = None
    notes: Optional[str] = None
    status: Optional[str] = None


@dataclass
class ShoppingItem(Record):
    name: str = ""
    list_id: Optional[str] = None
    quantity: Optional[int] = None
    purchased: bool = False


@dataclass(frozen=True)
class ResourceKind:
    """
    Registry entry describing one syncable resource collection.

    Attributes:
        name: Content type used by the approval procedures (e.g. "note")
        table: Remote collection name (e.g. "notes")
        record_type: Dataclass rows are converted into
        required_fields: Columns a row must carry besides the system ones
        foreign_keys: Column -> referenced table
    """
    name: str
    table: str
    record_type: Type[Record]
    required_fields: Tuple[str, ...] = ()
    foreign_keys: Dict[str, str] = field(default_factory=dict, compare=False)

    @property
    def field_names(self) -> List[str]:
        return [f.name for f in fields(self.record_type)]

    @property
    def editable_fields(self) -> List[str]:
        """Fields a user edit may change."""
        return [name for name in self.field_names if name not in SYSTEM_FIELDS]

    def from_row(self, row: Dict[str, Any]) -> Record:
        """
        Build a typed record from a remote row.

        Raises:
            RecordShapeError: If a required column is missing
        """
        missing = [
            name for name in ("id", "workspace_id", "author_id") + self.required_fields
            if row.get(name) is None
        ]
        if missing:
            raise RecordShapeError(
                f"{self.table} row is missing required columns: {', '.join(missing)}"
            )

        known = set(self.field_names)
        extra = set(row) - known
        if extra:
            logger.debug(f"Dropping undeclared {self.table} columns: {sorted(extra)}")
        return self.record_type(**{k: v for k, v in row.items() if k in known})

    def editable_view(self, row: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
        """Project a row onto its user-editable fields."""
        if row is None:
            return None
        return {name: row.get(name) for name in self.editable_fields}


RESOURCE_KINDS: Dict[str, ResourceKind] = {
    kind.name: kind for kind in (
        ResourceKind("note", "notes", Note, ("title",)),
        ResourceKind("task", "tasks", Task, ("title",)),
        ResourceKind("goal", "goals", Goal, ("title",)),
        ResourceKind("expense", "expenses", Expense, ("amount",),
                     {"category_id": "expense_categories"}),
        ResourceKind("travel_plan", "travel_plans", TravelPlan, ("destination",)),
        ResourceKind("shopping_item", "shopping_items", ShoppingItem, ("name",),
                     {"list_id": "shopping_lists"}),
    )
}


def get_kind(name) -> ResourceKind:
    """
    Look up a resource kind by content type or table name.

    A ResourceKind passed in is returned unchanged.

    Raises:
        ValueError: If the kind is unknown
    """
    if isinstance(name, ResourceKind):
        return name
    if name in RESOURCE_KINDS:
        return RESOURCE_KINDS[name]
    for kind in RESOURCE_KINDS.values():
        if kind.table == name:
            return kind
    raise ValueError(f"Unknown resource kind: {name}")


class EditOperation(Enum):
    EDIT = "edit"
    DELETE = "delete"


class EditStatus(Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


PENDING_EDITS_TABLE = "pending_edits"
PROFILES_TABLE = "profiles"


@dataclass
class PendingEdit:
    """An approval-gated proposal to change or delete someone else's record."""
    id: str
    workspace_id: str
    requester_id: str
    approver_id: str
    resource_kind: str
    resource_id: str
    operation: EditOperation
    original_snapshot: Optional[Dict[str, Any]]
    proposed_snapshot: Optional[Dict[str, Any]]
    rationale: Optional[str] = None
    status: EditStatus = EditStatus.PENDING
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    requester_name: Optional[str] = None  # filled by compose_pending_edits()

    @property
    def is_resolved(self) -> bool:
        return self.status is not EditStatus.PENDING

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "PendingEdit":
        """Build from a pending_edits row (remote column names)."""
        try:
            return cls(
                id=row["id"],
                workspace_id=row["workspace_id"],
                requester_id=row["requester_id"],
                approver_id=row["approver_id"],
                resource_kind=row["content_type"],
                resource_id=row["content_id"],
                operation=EditOperation(row["action"]),
                original_snapshot=row.get("original_data"),
                proposed_snapshot=row.get("new_data"),
                rationale=row.get("change_description"),
                status=EditStatus(row.get("status", "pending")),
                created_at=row.get("created_at"),
                updated_at=row.get("updated_at"),
            )
        except (KeyError, ValueError) as e:
            raise RecordShapeError(f"Malformed pending_edits row: {e}")

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "id": self.id,
            "workspace_id": self.workspace_id,
            "requester_id": self.requester_id,
            "approver_id": self.approver_id,
            "resource_kind": self.resource_kind,
            "resource_id": self.resource_id,
            "operation": self.operation.value,
            "original_snapshot": self.original_snapshot,
            "proposed_snapshot": self.proposed_snapshot,
            "rationale": self.rationale,
            "status": self.status.value,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "requester_name": self.requester_name,
        }


@dataclass
class Profile:
    id: str
    email: Optional[str] = None
    display_name: Optional[str] = None
    avatar_url: Optional[str] = None

    @property
    def label(self) -> str:
        return self.display_name or self.email or self.id


def compose_pending_edits(edits: List[PendingEdit],
                          profiles: List[Dict[str, Any]]) -> List[PendingEdit]:
    """
    Attach requester names to pending edits from a separately fetched
    profiles row-set.
    """
    by_id = {}
    for row in profiles:
        profile = Profile(
            id=row["id"],
            email=row.get("email"),
            display_name=row.get("display_name"),
            avatar_url=row.get("avatar_url"),
        )
        by_id[profile.id] = profile

    for edit in edits:
        profile = by_id.get(edit.requester_id)
        edit.requester_name = profile.label if profile else None
    return edits
