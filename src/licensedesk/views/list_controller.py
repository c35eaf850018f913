from __future__ import annotations

import asyncio
import enum
import logging
import math
from dataclasses import dataclass, replace
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from licensedesk.config import get_settings
from licensedesk.exceptions import ConsoleError
from licensedesk.models.license import License, LicenseStatus
from licensedesk.services.license_service import LicenseService
from licensedesk.views.debounce import Debouncer
from licensedesk.views.query_registry import QueryKey, QueryRegistry, query_key

logger = logging.getLogger(__name__)

UNKNOWN_PAGE_COUNT = -1
LICENSES_SCOPE = "licenses"
FILTER_KEYS = ("status", "email", "product_name", "type")

Filters = Tuple[Tuple[str, str], ...]


class SortDirection(str, enum.Enum):
    ASC = "ASC"
    DESC = "DESC"


def normalize_filters(filters: Mapping[str, Any]) -> Filters:
    """Sorted, hashable filter set with empty values dropped."""
    out: Dict[str, str] = {}
    for key, value in filters.items():
        if key not in FILTER_KEYS:
            raise ValueError(f"Unknown filter: {key}")
        if isinstance(value, enum.Enum):
            value = value.value
        if value is None:
            continue
        value = str(value)
        if value == "":
            continue
        out[key] = value
    return tuple(sorted(out.items()))


@dataclass(frozen=True)
class ListQueryState:
    page_index: int = 0
    page_size: int = 10
    sort_column: Optional[str] = None
    sort_direction: Optional[SortDirection] = None
    filters: Filters = ()

    def __post_init__(self) -> None:
        if self.page_index < 0:
            raise ValueError("page_index must be >= 0")
        if self.page_size <= 0:
            raise ValueError("page_size must be > 0")

    def filter_value(self, key: str) -> Optional[str]:
        return dict(self.filters).get(key)


def derive_query_params(state: ListQueryState) -> Dict[str, Any]:
    params: Dict[str, Any] = {
        "limit": state.page_size,
        "offset": state.page_index * state.page_size,
    }
    for key, value in state.filters:
        params[key] = value
    if state.sort_column:
        params["sort_by"] = state.sort_column
        params["sort_order"] = (state.sort_direction or SortDirection.ASC).value
    return params


def compute_page_count(total_count: Optional[int], page_size: int) -> int:
    if total_count is None:
        return UNKNOWN_PAGE_COUNT
    return math.ceil(total_count / page_size)


Listener = Callable[["LicenseListController"], None]


class LicenseListController:
    """
    Server-driven pagination, sorting and filtering for the license table.

    Every state change re-derives the query parameters and, when an event
    loop is running, starts a fetch for them; the previous fetch is
    cancelled. A response is applied only if it belongs to the most recent
    load and its key still matches the current state, so a slow earlier
    request never overwrites newer rows.
    Sorting, filtering and page-size changes all return to the first page.
    """

    def __init__(
        self,
        service: LicenseService,
        *,
        registry: Optional[QueryRegistry] = None,
        page_size: Optional[int] = None,
        debounce_s: Optional[float] = None,
        state: Optional[ListQueryState] = None,
    ) -> None:
        settings = get_settings()
        self.service = service
        self.registry = registry or QueryRegistry()
        self._state = state or ListQueryState(page_size=page_size or settings.DEFAULT_PAGE_SIZE)
        if debounce_s is None:
            debounce_s = settings.FILTER_DEBOUNCE_MS / 1000.0
        self._email_input = Debouncer(debounce_s, self._commit_email)
        self._rows: List[License] = []
        self._total: Optional[int] = None
        self._error: Optional[ConsoleError] = None
        self._loading = False
        self._loaded = False
        self._task: Optional[asyncio.Task] = None
        self._task_key: Optional[QueryKey] = None
        self._seq = 0
        self._listeners: List[Listener] = []

    # -- derived state -------------------------------------------------

    @property
    def state(self) -> ListQueryState:
        return self._state

    @property
    def params(self) -> Dict[str, Any]:
        return derive_query_params(self._state)

    @property
    def key(self) -> QueryKey:
        return query_key(LICENSES_SCOPE, self.params)

    @property
    def rows(self) -> List[License]:
        return self._rows

    @property
    def total_count(self) -> Optional[int]:
        return self._total

    @property
    def page_count(self) -> int:
        return compute_page_count(self._total, self._state.page_size)

    @property
    def error(self) -> Optional[ConsoleError]:
        return self._error

    @property
    def is_loading(self) -> bool:
        return self._loading

    @property
    def is_empty(self) -> bool:
        return self._loaded and not self._loading and self._error is None and not self._rows

    @property
    def is_filtered(self) -> bool:
        return bool(self._state.filter_value("email") or self._state.filter_value("status"))

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener) if listener in self._listeners else None

    def _notify(self) -> None:
        for listener in list(self._listeners):
            listener(self)

    # -- state transitions ---------------------------------------------

    def _update(self, state: ListQueryState) -> None:
        if state == self._state:
            return
        self._state = state
        self._notify()
        self._schedule_fetch()

    def set_page_index(self, page_index: int) -> None:
        if page_index < 0:
            raise ValueError("page_index must be >= 0")
        self._update(replace(self._state, page_index=page_index))

    def next_page(self) -> None:
        count = self.page_count
        if count != UNKNOWN_PAGE_COUNT and self._state.page_index + 1 >= count:
            return
        self.set_page_index(self._state.page_index + 1)

    def previous_page(self) -> None:
        if self._state.page_index > 0:
            self.set_page_index(self._state.page_index - 1)

    def set_page_size(self, page_size: int) -> None:
        if page_size <= 0:
            raise ValueError("page_size must be > 0")
        self._update(replace(self._state, page_size=page_size, page_index=0))

    def set_sort(self, column: Optional[str], direction: SortDirection = SortDirection.ASC) -> None:
        self._update(
            replace(
                self._state,
                sort_column=column or None,
                sort_direction=SortDirection(direction) if column else None,
                page_index=0,
            )
        )

    def toggle_sort(self, column: str) -> None:
        """Ascending on first click, then flip between directions."""
        state = self._state
        if state.sort_column == column and state.sort_direction is SortDirection.ASC:
            self.set_sort(column, SortDirection.DESC)
        else:
            self.set_sort(column, SortDirection.ASC)

    def clear_sort(self) -> None:
        self.set_sort(None)

    def set_filter(self, key: str, value: Any) -> None:
        filters = dict(self._state.filters)
        filters[key] = value
        self._update(replace(self._state, filters=normalize_filters(filters), page_index=0))

    def set_status_filter(self, status: Optional[LicenseStatus | str]) -> None:
        if status == "all":
            status = None
        self.set_filter("status", LicenseStatus(status) if status else None)

    def clear_filters(self) -> None:
        self._email_input.cancel()
        self._update(replace(self._state, filters=(), page_index=0))

    def input_email(self, text: str) -> None:
        """Buffer free-text email input; committed after the debounce interval."""
        self._email_input.push(text)

    def _commit_email(self, text: str) -> None:
        self.set_filter("email", text.strip() or None)

    # -- fetching ------------------------------------------------------

    def _schedule_fetch(self) -> None:
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            return
        previous, previous_key = self._task, self._task_key
        key, params = self.key, self.params
        if previous is not None and not previous.done():
            if previous_key == key:
                return
            # The registry aborts the request itself once nobody else waits on it.
            previous.cancel()
        self._task_key = key
        self._task = asyncio.ensure_future(self._load(key, params))

    def _is_current(self, key: QueryKey, seq: int) -> bool:
        return seq == self._seq and key == self.key

    async def _load(self, key: QueryKey, params: Dict[str, Any]) -> None:
        self._seq += 1
        seq = self._seq
        self._loading = True
        self._notify()
        try:
            page = await self.registry.fetch(key, lambda: self.service.list(params))
        except ConsoleError as exc:
            if not self._is_current(key, seq):
                logger.debug("Discarding stale error for %s", key)
                return
            self._error = exc
            self._rows = []
            self._total = None
            self._loading = False
            self._loaded = True
            self._notify()
            return
        if not self._is_current(key, seq):
            logger.debug("Discarding stale response for %s", key)
            return
        self._rows = list(page.licenses)
        self._total = page.total_count
        self._error = None
        self._loading = False
        self._loaded = True
        self._notify()

    async def refresh(self) -> None:
        """Fetch the current state now and wait for it to be applied."""
        await self._load(self.key, self.params)

    async def settle(self) -> None:
        """Wait until the most recently scheduled fetch has finished."""
        while self._task is not None and not self._task.done():
            await asyncio.wait({self._task})

    async def reload(self) -> None:
        """Drop cached pages and refetch; used after a mutation."""
        self.registry.invalidate(LICENSES_SCOPE)
        await self.refresh()

    async def change_status(self, license: License, status: LicenseStatus | str) -> Optional[License]:
        updated = await self.service.change_status(license.id, LicenseStatus(status), current=license.status)
        await self.reload()
        return updated

    def close(self) -> None:
        self._email_input.cancel()
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None
        self._task_key = None
