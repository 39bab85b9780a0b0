"""
Dependency Validator — turns a requested selection into a consistent one.

Rules come entirely from the catalog's relation table; nothing in here knows
about any particular pair of services. The validator:

1. heals missing ``requires`` members by adding them (never silently),
2. refuses removals that would break a ``removal_blocked_by`` or ``requires``
   relation,
3. orders the result with a stable topological sort over the precedence
   graph restricted to the selection,
4. reports everything else as errors or warnings in the result.

User-input problems are returned in the result object, not raised, so the
service-selection UI can render banners directly from it.
"""

import logging
from typing import Iterable, Optional

import networkx as nx

from schedule_engine.models import ServiceValidationResult
from schedule_engine.services.catalog import ServiceCatalog

logger = logging.getLogger(__name__)


def _dedupe(ids: Iterable[str]) -> list[str]:
    seen: set[str] = set()
    out: list[str] = []
    for service_id in ids:
        if service_id not in seen:
            seen.add(service_id)
            out.append(service_id)
    return out


class DependencyValidator:
    """Validates service selections against one catalog."""

    def __init__(self, catalog: ServiceCatalog):
        self.catalog = catalog

    def validate(
        self,
        requested: Iterable[str],
        previous: Optional[Iterable[str]] = None,
    ) -> ServiceValidationResult:
        """
        Validate ``requested``. When ``previous`` is given, ids present there
        but missing from ``requested`` are treated as removals and checked
        against ``removal_blocked_by`` and ``requires``.
        """
        selection = _dedupe(s.strip() for s in requested if s and s.strip())
        errors: list[str] = []
        warnings: list[str] = []

        if not selection:
            return ServiceValidationResult(
                is_valid=False,
                validated_set=[],
                errors=["Select at least one service"],
            )

        unknown = [s for s in selection if s not in self.catalog]
        if unknown:
            errors.append(f"Unknown service(s): {', '.join(unknown)}")
            selection = [s for s in selection if s in self.catalog]

        if previous is not None:
            restored = self._blocked_removals(selection, previous, errors)
            selection.extend(restored)

        validated, auto_added = self._close_over_requires(selection, warnings)

        if not validated:
            errors.append("Validation left no services to schedule")
            return ServiceValidationResult(
                is_valid=False, validated_set=[], errors=errors, warnings=warnings
            )

        warnings.extend(self._conflict_warnings(validated))

        order = self.order(validated)
        if order is None:
            errors.append(
                "Selected services have circular ordering constraints and "
                "cannot be scheduled"
            )
            order = []

        if errors:
            logger.info(f"Service selection rejected: {errors}")

        return ServiceValidationResult(
            is_valid=not errors,
            validated_set=validated,
            auto_added=auto_added,
            order=order,
            errors=errors,
            warnings=warnings,
        )

    # ──────────────────────────────────────────────────────────
    # Steps
    # ──────────────────────────────────────────────────────────

    def _blocked_removals(
        self, selection: list[str], previous: Iterable[str], errors: list[str]
    ) -> list[str]:
        """
        Ids the caller tried to drop while a blocker is still selected. A
        blocker is a ``removal_blocked_by`` member or any service the
        remaining selection keeps that requires the dropped id.
        """
        current = set(selection)
        requires = self.catalog.requires_graph()
        kept = set(current)
        for service_id in current:
            kept |= nx.descendants(requires, service_id)

        restored: list[str] = []
        for service_id in _dedupe(previous):
            if service_id in current or service_id not in self.catalog:
                continue
            definition = self.catalog[service_id]
            blockers = {b for b in definition.removal_blocked_by if b in current}
            blockers |= {r for r in requires.predecessors(service_id) if r in kept}
            if blockers:
                blocker_names = ", ".join(
                    self.catalog[b].display_name
                    for b in sorted(blockers, key=self.catalog.sort_key)
                )
                errors.append(
                    f"{definition.display_name} cannot be removed while "
                    f"{blocker_names} is selected"
                )
                restored.append(service_id)
        return restored

    def _close_over_requires(
        self, selection: list[str], warnings: list[str]
    ) -> tuple[list[str], list[str]]:
        """
        Add required co-services until a fixed point. Each pass can only add
        catalog ids, so the loop ends within ``len(catalog)`` passes.
        """
        validated = list(selection)
        present = set(validated)
        auto_added: list[str] = []

        changed = True
        while changed:
            changed = False
            for service_id in list(validated):
                definition = self.catalog[service_id]
                for required in sorted(
                    definition.requires, key=self.catalog.sort_key
                ):
                    if required in present:
                        continue
                    validated.append(required)
                    present.add(required)
                    auto_added.append(required)
                    changed = True
                    warnings.append(
                        f"{self.catalog[required].display_name} was added "
                        f"automatically because {definition.display_name} "
                        f"requires it"
                    )
        return validated, auto_added

    def _conflict_warnings(self, validated: list[str]) -> list[str]:
        present = set(validated)
        warnings: list[str] = []
        reported: set[frozenset[str]] = set()
        for service_id in validated:
            definition = self.catalog[service_id]
            for other in sorted(definition.conflicts_with, key=self.catalog.sort_key):
                pair = frozenset((service_id, other))
                if other in present and pair not in reported:
                    reported.add(pair)
                    warnings.append(
                        f"{definition.display_name} and "
                        f"{self.catalog[other].display_name} overlap in scope; "
                        f"check the selection is intended"
                    )
        return warnings

    def order(self, service_ids: Iterable[str]) -> Optional[list[str]]:
        """
        Stable topological order of the given services, ties broken by
        catalog priority then id. Returns None when the restricted precedence
        graph has a cycle.
        """
        graph = self.catalog.precedence_graph(service_ids)
        try:
            return list(
                nx.lexicographical_topological_sort(
                    graph, key=lambda n: self.catalog.sort_key(n)
                )
            )
        except nx.NetworkXUnfeasible:
            return None
