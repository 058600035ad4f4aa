"""
Turns pointer drag events from the builder canvas into SchemaStore mutations.

    IDLE --pointer_down--> PRESSED --moved past activation distance--> DRAGGING
    PRESSED --pointer_up--> IDLE          (a click: selects the field)
    DRAGGING --drag_end / drag_cancel--> IDLE

While DRAGGING there is exactly one ActiveDrag describing what is being dragged.
Clients whose drag library already applies an activation constraint can skip the
pointer_* methods and call drag_start / drag_over / drag_end directly.
"""
from __future__ import annotations

import enum
import logging
import math
from dataclasses import dataclass, field
from typing import List, Optional, Tuple, Union

from formbuilder import catalog
from formbuilder.config import settings
from formbuilder.schemas import FormField
from formbuilder.store import SchemaStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FieldHandle:
    """An existing field on the canvas."""
    field_id: str
    section_id: str = ""


@dataclass(frozen=True)
class KindToken:
    """A field kind picked up from the library panel."""
    kind: str


@dataclass(frozen=True)
class SectionTarget:
    section_id: str


@dataclass(frozen=True)
class FieldTarget:
    field_id: str
    section_id: str = ""


Draggable = Union[FieldHandle, KindToken]
DropTarget = Union[SectionTarget, FieldTarget]


class DragState(enum.Enum):
    IDLE = "idle"
    PRESSED = "pressed"
    DRAGGING = "dragging"


@dataclass
class ActiveDrag:
    item: Draggable
    origin_section_id: Optional[str] = None
    # field ids of the origin section before the drag, for rolling back live reorders
    original_order: List[str] = field(default_factory=list)
    over: Optional[DropTarget] = None
    # store state at drag start, so a drag that changes nothing leaves the form clean
    was_dirty: bool = False
    start_revision: int = 0
    live_moves: int = 0


class DragCoordinator:
    def __init__(self, store: SchemaStore, activation_distance: Optional[float] = None):
        self.store = store
        self.activation_distance = (
            settings.DRAG_ACTIVATION_DISTANCE if activation_distance is None else activation_distance
        )
        self.state = DragState.IDLE
        self.active: Optional[ActiveDrag] = None
        self._press: Optional[Tuple[Draggable, float, float]] = None

    # ---------------------------------------------------------- pointer level

    def pointer_down(self, item: Draggable, x: float, y: float) -> None:
        if self.state is DragState.DRAGGING:
            self.drag_cancel()
        self._press = (item, x, y)
        self.state = DragState.PRESSED

    def pointer_move(self, x: float, y: float, over: Optional[DropTarget] = None) -> None:
        if self.state is DragState.PRESSED:
            item, x0, y0 = self._press
            if math.hypot(x - x0, y - y0) <= self.activation_distance:
                return
            self._press = None
            if not self.drag_start(item):
                self.state = DragState.IDLE
                return
        if self.state is DragState.DRAGGING:
            self.drag_over(over)

    def pointer_up(self, over: Optional[DropTarget] = None) -> str:
        """Returns "click", "drop" or "ignored"."""
        if self.state is DragState.PRESSED:
            item, _, _ = self._press
            self._press = None
            self.state = DragState.IDLE
            if isinstance(item, FieldHandle) and self.store.get_field(item.field_id) is not None:
                self.store.select_field(item.field_id)
            return "click"
        if self.state is DragState.DRAGGING:
            self.drag_end(over)
            return "drop"
        return "ignored"

    # ------------------------------------------------------------ event level

    def drag_start(self, item: Draggable) -> bool:
        if self.store.form is None:
            return False
        if isinstance(item, FieldHandle):
            found = self.store.locate_field(item.field_id)
            if found is None:
                return False
            section = found[0]
            self.active = ActiveDrag(
                item=item,
                origin_section_id=section.id,
                original_order=[f.id for f in section.fields],
                was_dirty=self.store.dirty,
                start_revision=self.store.revision,
            )
        else:
            catalog.get_entry(item.kind)  # unknown kinds raise ValueError
            self.active = ActiveDrag(item=item)
        self.state = DragState.DRAGGING
        logger.debug(f"Drag started: {item}")
        return True

    def drag_over(self, over: Optional[DropTarget]) -> None:
        if self.state is not DragState.DRAGGING:
            return
        if over == self.active.over:
            return
        self.active.over = over
        item = self.active.item
        if not isinstance(item, FieldHandle) or not isinstance(over, FieldTarget):
            return
        if over.field_id == item.field_id:
            return

        found = self.store.locate_field(item.field_id)
        hovered = self.store.locate_field(over.field_id)
        if found is None or hovered is None:
            return
        section, old_index = found
        hovered_section, new_index = hovered
        if hovered_section is not section:
            # cross-section moves are settled on drop
            return

        ids = [f.id for f in section.fields]
        ids.insert(new_index, ids.pop(old_index))
        self.store.reorder_fields(section.id, ids)
        self.active.live_moves += 1

    def drag_end(self, over: Optional[DropTarget]) -> Optional[FormField]:
        """
        Finish the drag. Returns the field that was added or moved, if any.
        Releasing outside every drop target restores the order from before the drag.
        """
        if self.state is not DragState.DRAGGING:
            return None
        active = self.active
        self.active = None
        self.state = DragState.IDLE

        destination = self._resolve(over)
        if destination is None:
            self._rollback(active)
            return None
        section_id, index = destination

        item = active.item
        if isinstance(item, KindToken):
            return self.store.add_field(section_id, catalog.field_defaults(item.kind), index)

        found = self.store.locate_field(item.field_id)
        if found is None:
            return None
        if found[0].id == section_id:
            # same section: the live reorder from drag_over is the result
            section, index = found
            if [f.id for f in section.fields] == active.original_order:
                self._restore_clean(active)
            return section.fields[index]
        self.store.move_field(item.field_id, section_id, index)
        return self.store.get_field(item.field_id)

    def drag_cancel(self) -> None:
        if self.state is DragState.DRAGGING:
            self._rollback(self.active)
        self.active = None
        self._press = None
        self.state = DragState.IDLE

    # ---------------------------------------------------------------- helpers

    def _resolve(self, over: Optional[DropTarget]) -> Optional[Tuple[str, Optional[int]]]:
        """(section id, insert index or None to append) for a drop target."""
        if isinstance(over, SectionTarget):
            if self.store.get_section(over.section_id) is None:
                return None
            return over.section_id, None
        if isinstance(over, FieldTarget):
            found = self.store.locate_field(over.field_id)
            if found is None:
                return None
            return found[0].id, found[1]
        return None

    def _rollback(self, active: Optional[ActiveDrag]) -> None:
        if active is None or not active.original_order:
            return
        section = self.store.get_section(active.origin_section_id)
        if section is None:
            return
        current = [f.id for f in section.fields]
        if current != active.original_order and sorted(current) == sorted(active.original_order):
            self.store.reorder_fields(section.id, active.original_order)
            active.live_moves += 1
            logger.debug(f"Drag dropped outside any target, restored order of section {section.id}")
        self._restore_clean(active)

    def _restore_clean(self, active: ActiveDrag) -> None:
        # only when the drag's own reorders are the sole edits since it started
        if self.store.revision == active.start_revision + active.live_moves:
            self.store.dirty = active.was_dirty
