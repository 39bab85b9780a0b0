"""
Critical-Path Scheduler — dependency-respecting dates for every service.

Services are nodes of a NetworkX DiGraph and each ``depends_on`` relation is
an edge from the prerequisite to the dependent. The forward pass walks the
graph in topological order and assigns integer working-day offsets:

    start = max(end of every prerequisite), or 0 with none
    end   = start + ceil(final_hours / daily_capacity_hours)

Services with no path between them start on the same day; independent work
runs as parallel tracks instead of being queued. The backward pass then
traces the critical path from the last-finishing service through the
prerequisites that finish exactly when their dependent starts.

Ties are always broken by catalog priority then id, so a given input produces
the same schedule every time.
"""

import logging
import math
from dataclasses import dataclass, field
from datetime import date
from typing import Callable, Optional

import networkx as nx

from schedule_engine.models import ScheduleEntry, ServiceDuration
from schedule_engine.services.work_calendar import WorkCalendar

logger = logging.getLogger(__name__)

SortKey = Callable[[str], tuple]


@dataclass
class Schedule:
    entries: list[ScheduleEntry]
    total_duration_days: int
    critical_path: list[str]
    project_start: date
    project_end: date
    warnings: list[str] = field(default_factory=list)


class CriticalPathScheduler:
    """
    Forward/backward pass over the dependency graph of one solve.

    Like the rest of the engine this is built per solve; ``graph`` holds the
    graph of the most recent ``schedule`` call for inspection.
    """

    def __init__(
        self,
        daily_capacity_hours: float,
        work_weekends: bool = False,
        sort_key: Optional[SortKey] = None,
    ):
        if daily_capacity_hours <= 0:
            raise ValueError("daily_capacity_hours must be positive")
        self.daily_capacity_hours = daily_capacity_hours
        self.work_weekends = work_weekends
        self.sort_key: SortKey = sort_key or (lambda service_id: (service_id,))
        self.graph: Optional[nx.DiGraph] = None

    def build_graph(
        self,
        durations: list[ServiceDuration],
        dependencies: dict[str, list[str]],
    ) -> nx.DiGraph:
        """One node per service, one edge per prerequisite → dependent."""
        G = nx.DiGraph()
        for duration in durations:
            G.add_node(
                duration.service_id,
                hours=duration.final_duration_hours,
                days=self.working_days(duration.final_duration_hours),
            )
        for service_id, prerequisites in dependencies.items():
            if service_id not in G:
                continue
            for prerequisite in prerequisites:
                if prerequisite in G:
                    G.add_edge(prerequisite, service_id)
        self.graph = G
        return G

    def working_days(self, hours: float) -> int:
        # rounding first keeps 16.000000001h from becoming three 8h days
        return max(1, math.ceil(round(hours / self.daily_capacity_hours, 6)))

    def topological_order(self, graph: nx.DiGraph) -> list[str]:
        """Raises nx.NetworkXUnfeasible when the graph has a cycle."""
        return list(nx.lexicographical_topological_sort(graph, key=self.sort_key))

    def schedule(
        self,
        durations: list[ServiceDuration],
        dependencies: dict[str, list[str]],
        project_start: date,
        order: Optional[list[str]] = None,
        display_names: Optional[dict[str, str]] = None,
    ) -> Schedule:
        graph = self.build_graph(durations, dependencies)
        if order is None:
            order = self.topological_order(graph)
        self._check_order(graph, order)

        calendar = WorkCalendar(project_start, self.work_weekends)
        warnings: list[str] = []
        if calendar.start_was_moved:
            warnings.append(
                f"Project start {project_start.isoformat()} is not a working "
                f"day; work begins {calendar.start.isoformat()}"
            )

        # Forward pass
        start_day: dict[str, int] = {}
        end_day: dict[str, int] = {}
        for service_id in order:
            prerequisites = list(graph.predecessors(service_id))
            start = max((end_day[p] for p in prerequisites), default=0)
            start_day[service_id] = start
            end_day[service_id] = start + graph.nodes[service_id]["days"]

        total = max(end_day.values(), default=0)
        critical_path = self.find_critical_path(graph, start_day, end_day)
        on_path = set(critical_path)

        names = display_names or {}
        entries = [
            ScheduleEntry(
                service_id=service_id,
                display_name=names.get(service_id, service_id),
                start_date=calendar.date_at(start_day[service_id]),
                end_date=calendar.date_at(end_day[service_id]),
                start_day=start_day[service_id],
                end_day=end_day[service_id],
                duration_hours=graph.nodes[service_id]["hours"],
                duration_days=graph.nodes[service_id]["days"],
                on_critical_path=service_id in on_path,
                depends_on=sorted(graph.predecessors(service_id), key=self.sort_key),
            )
            for service_id in order
        ]

        logger.info(
            f"Scheduled {len(entries)} services over {total} working days; "
            f"critical path: {' → '.join(critical_path)}"
        )

        return Schedule(
            entries=entries,
            total_duration_days=total,
            critical_path=critical_path,
            project_start=calendar.start,
            project_end=calendar.date_at(total),
            warnings=warnings,
        )

    def find_critical_path(
        self,
        graph: nx.DiGraph,
        start_day: dict[str, int],
        end_day: dict[str, int],
    ) -> list[str]:
        """
        Backward pass. Every chain that runs from day 0 to the make-span
        through prerequisites ending exactly when their dependent starts is
        critical. Among several, the chain holding the highest-priority
        service wins; chains are compared by their members' sorted keys.
        """
        if not end_day:
            return []

        total = max(end_day.values())
        chains: list[list[str]] = []
        stack = [[s] for s, end in end_day.items() if end == total]
        while stack:
            chain = stack.pop()
            head = chain[-1]
            tight = [
                p for p in graph.predecessors(head)
                if end_day[p] == start_day[head]
            ]
            if not tight:
                chains.append(chain[::-1])
            stack.extend(chain + [p] for p in tight)

        return min(
            chains,
            key=lambda c: (
                sorted(self.sort_key(s) for s in c),
                [self.sort_key(s) for s in c],
            ),
        )

    @staticmethod
    def _check_order(graph: nx.DiGraph, order: list[str]) -> None:
        if set(order) != set(graph.nodes) or len(order) != len(graph):
            raise ValueError("Schedule order must list every service exactly once")
        position = {service_id: i for i, service_id in enumerate(order)}
        for prerequisite, dependent in graph.edges:
            if position[prerequisite] > position[dependent]:
                raise ValueError(
                    f"Order places '{dependent}' before its prerequisite "
                    f"'{prerequisite}'"
                )
