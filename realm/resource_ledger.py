"""Resource ledger shared by the town backend and construction callers."""

from __future__ import annotations

import math
from typing import Dict, Mapping

from .resources import ALL_RESOURCES, Resource, normalise_resource


class ResourceLedger:
    """Resource balances without capacity limits, keyed by :class:`Resource`."""

    def __init__(self, initial: Mapping[Resource | str, float] | None = None) -> None:
        self._amounts: Dict[Resource, float] = {resource: 0.0 for resource in ALL_RESOURCES}
        if initial:
            for resource, amount in initial.items():
                self._amounts[normalise_resource(resource)] = float(amount)

    # ------------------------------------------------------------------
    def snapshot(self) -> Dict[str, float]:
        return {resource.value: float(amount) for resource, amount in self._amounts.items()}

    def get(self, resource: Resource | str) -> float:
        return float(self._amounts.get(normalise_resource(resource), 0.0))

    def add(self, delta: Mapping[Resource | str, float]) -> None:
        for resource, amount in delta.items():
            if amount == 0:
                continue
            key = normalise_resource(resource)
            self._amounts[key] = self.get(key) + float(amount)

    def has(self, requirements: Mapping[Resource | str, float]) -> bool:
        return all(self.get(res) + 1e-9 >= amount for res, amount in requirements.items())

    def consume(self, requirements: Mapping[Resource | str, float]) -> bool:
        if not self.has(requirements):
            return False
        for resource, amount in requirements.items():
            if amount == 0:
                continue
            key = normalise_resource(resource)
            self._amounts[key] = max(0.0, self.get(key) - float(amount))
        return True

    def refund(self, cost: Mapping[Resource | str, float], rate: float) -> Dict[Resource, float]:
        """Credit ``floor(rate * cost)`` per resource and return what was paid."""

        paid = {
            normalise_resource(resource): float(math.floor(float(amount) * rate))
            for resource, amount in cost.items()
        }
        self.add(paid)
        return paid

    def withdraw(self, amounts: Mapping[Resource | str, float]) -> Dict[Resource, float]:
        """Take back up to ``amounts``, never below zero, and return what was removed."""

        removed: Dict[Resource, float] = {}
        for resource, amount in amounts.items():
            key = normalise_resource(resource)
            taken = min(self.get(key), max(0.0, float(amount)))
            if taken:
                self._amounts[key] = self.get(key) - taken
                removed[key] = taken
        return removed

    def set_amount(self, resource: Resource | str, amount: float) -> None:
        self._amounts[normalise_resource(resource)] = max(0.0, float(amount))
