# path: soundings/services/repository.py
#
# Storage seams. The engine only relies on these method contracts; the
# in-memory implementations back the service and the test suite.

from __future__ import annotations

import threading
from collections import OrderedDict
from typing import Dict, Iterable, List, Optional, Protocol

from soundings.models.alert_models import RiskAlert
from soundings.models.depth_models import AggregatedCell, StoredObservation


class DepthRepository(Protocol):
    def add_observation(self, stored: StoredObservation) -> None: ...

    def observations_for_cell(self, cell_key: str) -> List[StoredObservation]: ...

    def get_cell(self, cell_key: str) -> Optional[AggregatedCell]: ...

    def put_cell(self, cell: AggregatedCell) -> None: ...

    def get_cells(self, cell_keys: Iterable[str]) -> List[AggregatedCell]: ...

    def all_cells(self) -> List[AggregatedCell]: ...


class AlertRepository(Protocol):
    def put(self, alert: RiskAlert) -> None: ...

    def get(self, alert_id: str) -> Optional[RiskAlert]: ...

    def all(self) -> List[RiskAlert]: ...


class InMemoryDepthRepository:
    def __init__(self):
        self._cells: Dict[str, AggregatedCell] = {}
        self._observations: Dict[str, List[StoredObservation]] = {}
        self._lock = threading.Lock()

    def add_observation(self, stored: StoredObservation) -> None:
        with self._lock:
            self._observations.setdefault(stored.cell_key, []).append(stored)

    def observations_for_cell(self, cell_key: str) -> List[StoredObservation]:
        with self._lock:
            return list(self._observations.get(cell_key, ()))

    def get_cell(self, cell_key: str) -> Optional[AggregatedCell]:
        return self._cells.get(cell_key)

    def put_cell(self, cell: AggregatedCell) -> None:
        with self._lock:
            self._cells[cell.cell_key] = cell

    def get_cells(self, cell_keys: Iterable[str]) -> List[AggregatedCell]:
        cells = self._cells
        return [cells[k] for k in cell_keys if k in cells]

    def all_cells(self) -> List[AggregatedCell]:
        with self._lock:
            return list(self._cells.values())


class InMemoryAlertRepository:
    """Keeps every alert record; evicts the oldest closed ones past `limit`."""

    def __init__(self, limit: int = 5000):
        self.limit = limit
        self._alerts: "OrderedDict[str, RiskAlert]" = OrderedDict()
        self._lock = threading.Lock()

    def put(self, alert: RiskAlert) -> None:
        with self._lock:
            self._alerts[alert.id] = alert
            if len(self._alerts) > self.limit:
                for alert_id, existing in list(self._alerts.items()):
                    if len(self._alerts) <= self.limit:
                        break
                    if not existing.is_open:
                        del self._alerts[alert_id]

    def get(self, alert_id: str) -> Optional[RiskAlert]:
        return self._alerts.get(alert_id)

    def all(self) -> List[RiskAlert]:
        with self._lock:
            return list(self._alerts.values())
