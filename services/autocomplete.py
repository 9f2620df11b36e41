"""Debounced place-name autocomplete as a UI-independent state machine."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, List, Optional, Sequence, Set

import httpx

from models.records import PlaceCandidate

logger = logging.getLogger(__name__)

DEFAULT_MAX_ROWS = 5
MIN_NAME_LENGTH = 3
MIN_QUERY_INTERVAL = 0.8

SearchFunction = Callable[[str, int], Awaitable[Optional[List[PlaceCandidate]]]]
SelectionHandler = Callable[[PlaceCandidate], None]


@dataclass
class OptionSlot:
    """One rendered entry of the candidate list."""

    text: str = ""
    index: int = 0
    hidden: bool = True
    candidate: bool = False


class CandidateListView:
    """Rendering adapter that keeps option slots alive between queries.

    Existing slots are reused and surplus ones hidden, so a new result list only
    creates the slots it is missing.
    """

    def __init__(self) -> None:
        self.slots: List[OptionSlot] = []
        self.hidden = True
        self.created = 0

    def render(
        self,
        candidates: Sequence[PlaceCandidate],
        highlighted: Optional[int],
        visible: bool,
    ) -> None:
        self.hidden = not visible
        if not candidates:
            return

        for slot in self.slots:
            slot.hidden = True
            slot.candidate = False

        for ix, place in enumerate(candidates):
            if ix < len(self.slots):
                slot = self.slots[ix]
            else:
                slot = OptionSlot()
                self.slots.append(slot)
                self.created += 1
            slot.text = place.name
            slot.index = ix
            slot.hidden = False
            slot.candidate = ix == highlighted

    def visible_slots(self) -> List[OptionSlot]:
        if self.hidden:
            return []
        return [slot for slot in self.slots if not slot.hidden]


class AutocompleteController:
    """State for one text field and its candidate popup.

    ``handle_input`` restarts the debounce timer for every qualifying change;
    when it fires, a prefix search is issued. Each search is tagged with a
    sequence number and only the response to the latest one is applied.
    """

    def __init__(
        self,
        search: SearchFunction,
        *,
        max_rows: int = DEFAULT_MAX_ROWS,
        min_length: int = MIN_NAME_LENGTH,
        debounce: float = MIN_QUERY_INTERVAL,
        view: Optional[CandidateListView] = None,
        on_select: Optional[SelectionHandler] = None,
    ) -> None:
        self._search = search
        self.max_rows = max_rows
        self.min_length = min_length
        self.debounce = debounce
        self.view = view
        self.on_select = on_select

        self.text = ""
        self.candidates: List[PlaceCandidate] = []
        self.highlighted: Optional[int] = None
        self.popup_visible = False
        self.selected_place: Optional[PlaceCandidate] = None
        self.query_in_progress = False

        self._timer: Optional[asyncio.TimerHandle] = None
        self._tasks: Set[asyncio.Task[bool]] = set()
        self._issued_seq = 0

    @property
    def timer_pending(self) -> bool:
        return self._timer is not None

    def handle_input(self, text: str) -> None:
        """Record a text change and (re)start the debounce timer when long enough.

        Must be called from inside a running event loop.
        """
        self.text = text
        self.selected_place = None
        if len(text) < self.min_length:
            return
        self.cancel_pending()
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(self.debounce, self._on_timer)

    def cancel_pending(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    async def wait_idle(self) -> None:
        """Wait for searches started by the debounce timer to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def handle_key(self, key: str) -> bool:
        """Apply a navigation key; returns True when the key must not propagate."""
        if key == "Enter":
            if not self.popup_visible:
                self.cancel_pending()
                await self.autocomplete()
                return True
            self._commit(self.highlighted)
            return False
        if key == "ArrowDown":
            return self._move_highlight(1)
        if key == "ArrowUp":
            return self._move_highlight(-1)
        return False

    def hover(self, index: int) -> bool:
        if not self.popup_visible or not 0 <= index < len(self.candidates):
            return False
        self.highlighted = index
        self._render()
        return True

    def click(self, index: int) -> None:
        if 0 <= index < len(self.candidates):
            self._commit(index)
        else:
            self.popup_visible = False
            self._render()

    async def autocomplete(self) -> bool:
        """Run a prefix search for the current text; False if the result was dropped."""
        self._issued_seq += 1
        seq = self._issued_seq
        query = self.text
        self.query_in_progress = True
        try:
            places = await self._search(query, self.max_rows)
        except httpx.HTTPError as exc:
            logger.warning(
                "Place search failed",
                extra={"query": query, "request_seq": seq, "reason": str(exc)},
            )
            return False
        finally:
            if seq == self._issued_seq:
                self.query_in_progress = False

        if seq != self._issued_seq:
            logger.debug(
                "Discarding stale place search response",
                extra={"query": query, "request_seq": seq},
            )
            return False

        self.candidates = list(places or [])
        if self.candidates:
            self.highlighted = 0
            self.popup_visible = True
        else:
            self.highlighted = None
            self.popup_visible = False
        self._render()
        return True

    def _on_timer(self) -> None:
        self._timer = None
        task = asyncio.get_running_loop().create_task(self.autocomplete())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _move_highlight(self, step: int) -> bool:
        if not self.popup_visible or self.highlighted is None:
            return False
        target = min(max(self.highlighted + step, 0), self.max_rows)
        if target == self.highlighted or target >= len(self.candidates):
            return False
        self.highlighted = target
        self._render()
        return True

    def _commit(self, index: Optional[int]) -> None:
        if index is None or not 0 <= index < len(self.candidates):
            return
        place = self.candidates[index]
        self.text = place.name
        self.selected_place = place
        self.popup_visible = False
        self._render()
        if self.on_select is not None:
            self.on_select(place)

    def _render(self) -> None:
        if self.view is not None:
            self.view.render(self.candidates, self.highlighted, self.popup_visible)
