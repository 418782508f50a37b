import asyncio
import datetime
from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Any, Dict, List, Optional, Set


class JobStatus(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    STOPPED = "stopped"


class AssetType(str, Enum):
    VIDEO = "video"
    IMAGE = "image"
    AUDIO = "audio"
    DOCUMENT = "document"
    UNKNOWN = "unknown"


class SelectorKind(str, Enum):
    CSS = "css"
    XPATH = "xpath"


class SelectorPurpose(str, Enum):
    LINKS = "links"
    ASSETS = "assets"
    METADATA = "metadata"


@dataclass(frozen=True)
class Selector:
    kind: SelectorKind
    query: str
    purpose: SelectorPurpose

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Selector":
        return cls(
            kind=SelectorKind(d["kind"]),
            query=d["query"],
            purpose=SelectorPurpose(d["purpose"]),
        )


@dataclass
class ScrapingRules:
    max_depth: int = 0
    max_assets: int = 0
    include_pattern: str = ""
    exclude_pattern: str = ""

    # seconds
    timeout: float = 0.0
    request_delay: float = 0.0
    randomize_delay: bool = False

    user_agent: str = ""
    max_size: int = 0

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "ScrapingRules":
        known = cls.__dataclass_fields__.keys()
        return cls(**{k: v for k, v in (d or {}).items() if k in known})


@dataclass
class Asset:
    id: str
    url: str
    job_id: str = ""
    type: AssetType = AssetType.UNKNOWN
    title: str = ""
    description: str = ""
    metadata: Dict[str, str] = field(default_factory=dict)
    size: int = 0
    local_path: str = ""
    thumbnail_path: str = ""
    downloaded: bool = False
    error: str = ""
    source: str = ""

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Asset":
        known = cls.__dataclass_fields__.keys()
        data = {k: v for k, v in d.items() if k in known}
        data["type"] = AssetType(data.get("type", AssetType.UNKNOWN.value))
        data["metadata"] = dict(data.get("metadata") or {})
        return cls(**data)

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["type"] = self.type.value
        return d


def _ts(value: Optional[datetime.datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _parse_ts(value: Optional[str]) -> Optional[datetime.datetime]:
    return datetime.datetime.fromisoformat(value) if value else None


# Fields that only exist while the process is alive; never persisted.
RUNTIME_FIELDS = ("lock", "completed", "task", "pending_assets")


@dataclass
class Job:
    id: str
    base_url: str
    selectors: List[Selector] = field(default_factory=list)
    rules: ScrapingRules = field(default_factory=ScrapingRules)
    schedule: str = ""
    status: JobStatus = JobStatus.IDLE
    last_run: Optional[datetime.datetime] = None
    next_run: Optional[datetime.datetime] = None
    assets: List[Asset] = field(default_factory=list)

    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False, compare=False)
    completed: Set[str] = field(default_factory=set, repr=False, compare=False)
    task: Optional["asyncio.Task[None]"] = field(default=None, repr=False, compare=False)
    pending_assets: int = field(default=0, repr=False, compare=False)

    def __setattr__(self, name, value):
        if name == "id" and "id" in self.__dict__:
            raise AttributeError("job id is immutable")
        super().__setattr__(name, value)

    def selectors_for(self, purpose: SelectorPurpose) -> List[Selector]:
        return [s for s in self.selectors if s.purpose == purpose]

    def asset_slots_used(self) -> int:
        """Assets already recorded plus those accepted but still in flight."""
        return len(self.assets) + self.pending_assets

    def asset_cap_reached(self) -> bool:
        return self.rules.max_assets > 0 and self.asset_slots_used() >= self.rules.max_assets

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "base_url": self.base_url,
            "selectors": [
                {"kind": s.kind.value, "query": s.query, "purpose": s.purpose.value}
                for s in self.selectors
            ],
            "rules": asdict(self.rules),
            "schedule": self.schedule,
            "status": self.status.value,
            "last_run": _ts(self.last_run),
            "next_run": _ts(self.next_run),
            "assets": [a.to_dict() for a in self.assets],
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Job":
        return cls(
            id=d["id"],
            base_url=d["base_url"],
            selectors=[Selector.from_dict(s) for s in d.get("selectors") or []],
            rules=ScrapingRules.from_dict(d.get("rules") or {}),
            schedule=d.get("schedule") or "",
            status=JobStatus(d.get("status") or JobStatus.IDLE.value),
            last_run=_parse_ts(d.get("last_run")),
            next_run=_parse_ts(d.get("next_run")),
            assets=[Asset.from_dict(a) for a in d.get("assets") or []],
        )
