from dataclasses import dataclass, field, asdict, replace
from datetime import datetime
from typing import Dict, List, Optional, Set

from month_utils import validate_month
from tracker_errors import ScanError


@dataclass(frozen=True)
class TrackedFile:
    path: str
    name: str
    extension: str
    size: int
    created: datetime
    modified: datetime
    folder_name: str
    folder_path: str


@dataclass
class TrackingRecord:
    bill_month: Optional[str] = None
    sent_month: Optional[str] = None
    sent_at: Optional[str] = None
    mirrored_path: Optional[str] = None

    def __post_init__(self):
        if (self.sent_month is None) != (self.sent_at is None):
            raise ValueError("sent_month and sent_at must be set together")
        if self.bill_month is not None:
            validate_month(self.bill_month)
        if self.sent_month is not None:
            validate_month(self.sent_month)

    @property
    def status(self) -> str:
        return "sent" if self.sent_month else "pending"

    @property
    def is_sent(self) -> bool:
        return self.sent_month is not None

    def merged(self, **fields) -> "TrackingRecord":
        return replace(self, **fields)

    def to_dict(self) -> Dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict) -> "TrackingRecord":
        # camelCase keys are what the desktop app wrote
        sent_month = data.get("sent_month", data.get("sentMonth")) or None
        sent_at = data.get("sent_at", data.get("sentAt")) or None
        # the desktop app could save a sent month without its timestamp
        if sent_month and not sent_at:
            sent_at = f"{sent_month}-01T00:00:00"
        elif sent_at and not sent_month:
            sent_at = None
        return cls(
            bill_month=data.get("bill_month", data.get("billMonth")) or None,
            sent_month=sent_month,
            sent_at=sent_at,
            mirrored_path=data.get("mirrored_path", data.get("gstSubmittedPath")) or None,
        )


@dataclass
class TrackerSettings:
    theme: str = "light"
    default_sent_month: str = "current"  # current|previous
    auto_expand_folders: bool = True
    show_file_size: bool = True
    show_modified_date: bool = True
    show_bill_month: bool = True
    show_sent_month: bool = True
    notifications: bool = True
    auto_sync_gst: bool = True
    sync_interval: int = 30

    @classmethod
    def from_dict(cls, data: Optional[Dict]) -> "TrackerSettings":
        known = {k: v for k, v in (data or {}).items() if k in cls.__dataclass_fields__}
        return cls(**known)


@dataclass
class Reminder:
    id: str
    file_path: str
    due_date: str
    note: str = ""
    notified: bool = False


@dataclass
class Configuration:
    root_path: str
    selected_subfolders: Set[str] = field(default_factory=set)
    ignored_subfolders: Set[str] = field(default_factory=set)
    ignored_files: Set[str] = field(default_factory=set)
    gst_submitted_root_path: Optional[str] = None
    settings: TrackerSettings = field(default_factory=TrackerSettings)
    tags: Dict[str, List[str]] = field(default_factory=dict)
    reminders: List[Reminder] = field(default_factory=list)

    def is_file_ignored(self, path: str, name: str) -> bool:
        return path in self.ignored_files or name in self.ignored_files

    def to_dict(self) -> Dict:
        return {
            "root_path": self.root_path,
            "selected_subfolders": sorted(self.selected_subfolders),
            "ignored_subfolders": sorted(self.ignored_subfolders),
            "ignored_files": sorted(self.ignored_files),
            "gst_submitted_root_path": self.gst_submitted_root_path,
            "settings": asdict(self.settings),
            "tags": {k: list(v) for k, v in self.tags.items()},
            "reminders": [asdict(r) for r in self.reminders],
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "Configuration":
        return cls(
            root_path=data.get("root_path", data.get("folderPath", "")),
            selected_subfolders=set(data.get("selected_subfolders", data.get("selectedSubfolders", []))),
            ignored_subfolders=set(data.get("ignored_subfolders", data.get("ignoredSubfolders", []))),
            ignored_files=set(data.get("ignored_files", data.get("ignoredFiles", []))),
            gst_submitted_root_path=data.get("gst_submitted_root_path", data.get("gstSubmittedFolderPath")) or None,
            settings=TrackerSettings.from_dict(data.get("settings")),
            tags={k: list(v) for k, v in (data.get("tags") or {}).items()},
            reminders=[Reminder(**r) for r in data.get("reminders", [])],
        )


@dataclass
class SubfolderInfo:
    name: str
    path: str
    depth: int


@dataclass
class TreeNode:
    name: str
    path: str
    children: List["TreeNode"] = field(default_factory=list)


@dataclass
class FolderStructure:
    subfolders: List[SubfolderInfo]
    tree: List[TreeNode]
    errors: List[ScanError] = field(default_factory=list)


@dataclass
class FolderFiles:
    folder_name: str
    folder_path: str
    files: List[TrackedFile]


@dataclass
class BillsScan:
    folders: List[FolderFiles]
    errors: List[ScanError] = field(default_factory=list)

    @property
    def files(self) -> List[TrackedFile]:
        return [f for folder in self.folders for f in folder.files]


@dataclass
class GstMatch:
    file_name: str
    submission_month: str
    bill_month: str
    path: str


@dataclass
class MatchScan:
    matches: List[GstMatch]
    errors: List[ScanError] = field(default_factory=list)


@dataclass
class ReconcileResult:
    files: List[TrackedFile]
    changed: int = 0
    removed: List[str] = field(default_factory=list)
    updated: List[str] = field(default_factory=list)
    errors: list = field(default_factory=list)
    gst_checked: bool = False
    started_at: str = ""
    duration_ms: int = 0


@dataclass
class BulkResult:
    updated: List[str] = field(default_factory=list)
    mirrored: List[str] = field(default_factory=list)
    errors: list = field(default_factory=list)
