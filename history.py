"""Run history: runs joined to their configuration and application.

Counts always cover every fetched run; search text and the status filter only
narrow the listed entries.
"""
import asyncio
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from catalog import Application, get_application
from schemas import FINISHED_STATUSES

STATUSES = ("pending", "running") + FINISHED_STATUSES
STATUS_FILTERS = ("all",) + STATUSES


@dataclass(frozen=True)
class HistoryEntry:
    run: Dict[str, Any]
    configuration: Optional[Dict[str, Any]] = None
    application: Optional[Application] = None

    def matches(self, query: str) -> bool:
        if not query:
            return True
        names = [
            self.configuration["name"] if self.configuration else "",
            self.application.name if self.application else "",
        ]
        return any(query in name.lower() for name in names)


@dataclass
class History:
    entries: List[HistoryEntry] = field(default_factory=list)
    counts: Dict[str, int] = field(default_factory=dict)


def enrich_runs(runs: Iterable[Dict[str, Any]], configurations: Iterable[Dict[str, Any]]) -> List[HistoryEntry]:
    by_id = {c["id"]: c for c in configurations}
    entries = []
    for run in runs:
        config = by_id.get(run["testConfigurationId"])
        app = get_application(config["applicationId"]) if config else None
        entries.append(HistoryEntry(run=run, configuration=config, application=app))
    return entries


def filter_runs(entries: Iterable[HistoryEntry], search: str = "", status: str = "all") -> List[HistoryEntry]:
    if status not in STATUS_FILTERS:
        raise ValueError(f"unknown status filter {status!r}")
    query = (search or "").strip().lower()
    return [
        e for e in entries
        if e.matches(query) and (status == "all" or e.run["status"] == status)
    ]


def status_counts(runs: Iterable[Dict[str, Any]]) -> Dict[str, int]:
    counts = dict.fromkeys(("total",) + STATUSES, 0)
    for run in runs:
        counts["total"] += 1
        if run["status"] in counts:
            counts[run["status"]] += 1
    return counts


async def load_history(client, search: str = "", status: str = "all", limit: Optional[int] = None) -> History:
    """Fetch runs and configurations through ``client`` and build the filtered history."""
    runs, configurations = await asyncio.gather(client.list_runs(limit), client.list_configurations())
    entries = enrich_runs(runs, configurations)
    return History(entries=filter_runs(entries, search, status), counts=status_counts(runs))
