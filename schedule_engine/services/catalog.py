"""
Service Catalog — static reference data for every selectable service.

The catalog is pure data: production rates, units, weather sensitivity and
the declarative dependency relations. It is loaded once per process and is
read-only afterwards. Loading checks the relation graphs with NetworkX and
refuses to start on an authoring defect (unknown id, dependency cycle), so a
broken catalog can never surface as a per-request scheduling error.
"""

import json
import logging
from functools import lru_cache
from pathlib import Path
from typing import Iterable, Optional

import networkx as nx
from pydantic import ValidationError

from schedule_engine.config import get_settings
from schedule_engine.exceptions import CatalogDefinitionError
from schedule_engine.models import ServiceDefinition, ServiceUnit

logger = logging.getLogger(__name__)


# ──────────────────────────────────────────────────────────────
# Built-in service definitions
# ──────────────────────────────────────────────────────────────
#
# Rates are crew-hours per unit. Area services are per square foot, count
# services per window/pane/frame.

DEFAULT_SERVICES: list[dict] = [
    {
        "id": "BF",
        "display_name": "Biofilm Removal",
        "description": "Specialized removal of biofilm and organic buildup",
        "unit": ServiceUnit.AREA,
        "base_rate_per_unit": 0.005,
        "weather_sensitive": True,
        "sensitivity_coefficient": 0.4,
        "priority": 0,
        "must_precede": {"PW", "SW", "PWS"},
    },
    {
        "id": "PW",
        "display_name": "Pressure Washing",
        "description": "High-pressure cleaning for building exteriors",
        "unit": ServiceUnit.AREA,
        "base_rate_per_unit": 0.00125,
        "weather_sensitive": True,
        "sensitivity_coefficient": 0.3,
        "priority": 1,
        "requires": {"WC"},
        "must_precede": {"WC"},
        "conflicts_with": {"PWS", "SW"},
    },
    {
        "id": "SW",
        "display_name": "Soft Washing",
        "description": "Low-pressure cleaning with specialized detergents",
        "unit": ServiceUnit.AREA,
        "base_rate_per_unit": 0.0017,
        "weather_sensitive": True,
        "sensitivity_coefficient": 0.5,
        "priority": 1,
        "must_precede": {"WC"},
    },
    {
        "id": "PWS",
        "display_name": "Pressure Wash & Seal",
        "description": "Pressure washing followed by protective sealing",
        "unit": ServiceUnit.AREA,
        "base_rate_per_unit": 0.0025,
        "weather_sensitive": True,
        "sensitivity_coefficient": 0.6,
        "priority": 1,
        "requires": {"WC"},
        "must_precede": {"WC"},
    },
    {
        "id": "PD",
        "display_name": "Parking Deck Cleaning",
        "description": "Heavy-duty cleaning of parking structures",
        "unit": ServiceUnit.AREA,
        "base_rate_per_unit": 0.00067,
        "weather_sensitive": True,
        "sensitivity_coefficient": 0.3,
        "priority": 2,
        "measurement_required": True,
    },
    {
        "id": "HD",
        "display_name": "High Dusting",
        "description": "Cleaning of high and hard-to-reach interior areas",
        "unit": ServiceUnit.AREA,
        "base_rate_per_unit": 0.00083,
        "priority": 2,
        "must_precede": {"FC"},
    },
    {
        "id": "WC",
        "display_name": "Window Cleaning",
        "description": "Professional interior and exterior window cleaning",
        "unit": ServiceUnit.COUNT,
        "base_rate_per_unit": 0.053,
        "weather_sensitive": True,
        "sensitivity_coefficient": 0.2,
        "priority": 3,
        "removal_blocked_by": {"PW", "PWS"},
    },
    {
        "id": "GR",
        "display_name": "Glass Restoration",
        "description": "Restoration of damaged or etched glass surfaces",
        "unit": ServiceUnit.COUNT,
        "base_rate_per_unit": 0.16,
        "weather_sensitive": True,
        "sensitivity_coefficient": 0.1,
        "priority": 4,
        "measurement_required": True,
        "must_follow": {"WC"},
    },
    {
        "id": "FR",
        "display_name": "Frame Restoration",
        "description": "Cleaning and restoration of window frames",
        "unit": ServiceUnit.COUNT,
        "base_rate_per_unit": 0.25,
        "weather_sensitive": True,
        "sensitivity_coefficient": 0.2,
        "priority": 4,
        "must_follow": {"WC"},
    },
    {
        "id": "GRC",
        "display_name": "Granite Reconditioning",
        "description": "Restoration and sealing of granite surfaces",
        "unit": ServiceUnit.AREA,
        "base_rate_per_unit": 0.01,
        "weather_sensitive": True,
        "sensitivity_coefficient": 0.5,
        "priority": 5,
        "must_follow": {"PW", "SW"},
    },
    {
        "id": "FC",
        "display_name": "Final Clean",
        "description": "Comprehensive post-construction cleaning",
        "unit": ServiceUnit.AREA,
        "base_rate_per_unit": 0.0005,
        "priority": 6,
        "must_follow": {"WC", "GR", "FR"},
    },
]


class ServiceCatalog:
    """
    Immutable lookup of ServiceDefinitions plus the two relation graphs.

    Use ``ServiceCatalog.from_definitions`` (or ``load_catalog``) to build a
    checked catalog; the plain constructor trusts its input.
    """

    def __init__(self, definitions: Iterable[ServiceDefinition]):
        self._services: dict[str, ServiceDefinition] = {}
        for definition in definitions:
            self._services[definition.id] = definition

    # ── construction ────────────────────────────────────────────

    @classmethod
    def from_definitions(
        cls, definitions: Iterable[ServiceDefinition | dict]
    ) -> "ServiceCatalog":
        """Build and check a catalog. Raises CatalogDefinitionError."""
        parsed: list[ServiceDefinition] = []
        seen: set[str] = set()
        for raw in definitions:
            try:
                definition = (
                    raw if isinstance(raw, ServiceDefinition)
                    else ServiceDefinition(**raw)
                )
            except ValidationError as e:
                raise CatalogDefinitionError(
                    f"Invalid service definition: {e}"
                ) from e
            if definition.id in seen:
                raise CatalogDefinitionError(
                    f"Service '{definition.id}' is defined twice"
                )
            seen.add(definition.id)
            parsed.append(definition)

        catalog = cls(parsed)
        catalog.check_integrity()
        logger.info(f"Loaded service catalog with {len(catalog)} services")
        return catalog

    def check_integrity(self) -> None:
        """
        Fail fast on authoring defects: dangling references, and cycles in
        either the requires graph or the precedence graph.
        """
        if not self._services:
            raise CatalogDefinitionError("Service catalog is empty")

        for definition in self._services.values():
            relations = {
                "requires": definition.requires,
                "must_precede": definition.must_precede,
                "must_follow": definition.must_follow,
                "removal_blocked_by": definition.removal_blocked_by,
                "conflicts_with": definition.conflicts_with,
            }
            for relation, ids in relations.items():
                unknown = sorted(ids - self._services.keys())
                if unknown:
                    raise CatalogDefinitionError(
                        f"Service '{definition.id}' {relation} unknown "
                        f"service(s): {', '.join(unknown)}"
                    )

        for name, graph in (
            ("requires", self.requires_graph()),
            ("precedence", self.precedence_graph()),
        ):
            if not nx.is_directed_acyclic_graph(graph):
                cycle = nx.find_cycle(graph)
                path = " -> ".join(edge[0] for edge in cycle) + f" -> {cycle[0][0]}"
                raise CatalogDefinitionError(
                    f"Catalog {name} relation contains a cycle: {path}"
                )

    # ── graphs ──────────────────────────────────────────────────

    def requires_graph(self) -> nx.DiGraph:
        """Edge A → B when A requires B."""
        G = nx.DiGraph()
        G.add_nodes_from(self._services)
        for definition in self._services.values():
            for required in definition.requires:
                G.add_edge(definition.id, required)
        return G

    def precedence_graph(self, subset: Optional[Iterable[str]] = None) -> nx.DiGraph:
        """
        Edge A → B when A must be finished before B starts.

        Built from ``must_precede`` and reversed ``must_follow``. With a
        subset, only services in the subset (and edges between them) are
        included, since precedence only applies to selected services.
        """
        nodes = set(self._services) if subset is None else set(subset)
        G = nx.DiGraph()
        for service_id in nodes:
            definition = self._services[service_id]
            G.add_node(service_id, priority=definition.priority)
        for service_id in nodes:
            definition = self._services[service_id]
            for successor in definition.must_precede:
                if successor in nodes:
                    G.add_edge(service_id, successor)
            for predecessor in definition.must_follow:
                if predecessor in nodes:
                    G.add_edge(predecessor, service_id)
        return G

    # ── lookups ─────────────────────────────────────────────────

    def get(self, service_id: str) -> Optional[ServiceDefinition]:
        return self._services.get(service_id)

    def __getitem__(self, service_id: str) -> ServiceDefinition:
        return self._services[service_id]

    def __contains__(self, service_id: object) -> bool:
        return service_id in self._services

    def __len__(self) -> int:
        return len(self._services)

    def __iter__(self):
        return iter(self.definitions())

    def definitions(self) -> list[ServiceDefinition]:
        """All services in catalog priority order."""
        return sorted(self._services.values(), key=self.sort_key)

    def sort_key(self, service: ServiceDefinition | str) -> tuple[int, str]:
        """Deterministic tie-break: catalog priority, then id."""
        if isinstance(service, str):
            service = self._services[service]
        return (service.priority, service.id)


def _read_catalog_file(path: Path) -> list[dict]:
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        raise CatalogDefinitionError(
            f"Could not read service catalog from {path}: {e}"
        ) from e
    if isinstance(data, dict):
        data = data.get("services", [])
    if not isinstance(data, list):
        raise CatalogDefinitionError(
            f"Service catalog file {path} must hold a list of services"
        )
    return data


def load_catalog(path: Optional[str] = None) -> ServiceCatalog:
    """Load the catalog from a JSON file, or the built-in definitions."""
    if path:
        logger.info(f"Loading service catalog from {path}")
        return ServiceCatalog.from_definitions(_read_catalog_file(Path(path)))
    return ServiceCatalog.from_definitions(DEFAULT_SERVICES)


@lru_cache()
def get_catalog() -> ServiceCatalog:
    """
    Process-wide catalog. Read-only after load, so sharing it across
    requests is safe.
    """
    return load_catalog(get_settings().catalog_path or None)
