# in-memory slide decks with dense 1..N ordering
import uuid
import logging
from typing import Any, Dict, Hashable, Iterable, List, Optional, Sequence, Tuple, Union

from .exceptions import NotFound
from .models import PageImage, ReorderItem, Slide, SlideGroup, SlideUpdate, utc_now

logger = logging.getLogger(__name__)

DEFAULT_GROUP = "General"
COPY_SUFFIX = " (Copy)"

# fields a caller may change on an existing slide
EDITABLE_FIELDS = {"title", "image_ref", "group", "order"}

Move = Union[ReorderItem, Tuple[str, int], Dict[str, Any]]


# holds every deck the pipeline is working on, keyed by document id or overlay key
class SlideRepository:
    """
    Deck-scoped slide operations.

    Each deck is kept sorted by ``order`` and every mutation leaves the order
    values as a permutation of ``1..N``. Callers get copies, so nothing outside
    the repository can break that invariant. There is no locking: a deck must
    be mutated from one call site at a time.
    """

    def __init__(self):
        self._decks: Dict[Hashable, List[Slide]] = {}

    # deck lifecycle

    def seed(self, deck_id: Hashable, slides: Iterable[Slide]) -> List[Slide]:
        """Replace a deck with copies of the given slides"""
        deck = [slide.model_copy(deep=True) for slide in slides]

        ids = [slide.id for slide in deck]
        if len(ids) != len(set(ids)):
            raise ValueError(f"Duplicate slide ids in deck {deck_id}")

        # keep the supplied ordering, closing any gaps
        deck.sort(key=lambda slide: slide.order)
        if [slide.order for slide in deck] != list(range(1, len(deck) + 1)):
            logger.warning(f"Deck {deck_id} had non-dense ordering, renumbering")
        self._renumber(deck, touch=False)

        self._decks[deck_id] = deck
        logger.debug(f"Seeded deck {deck_id} with {len(deck)} slides")
        return self._copies(deck)

    def has_deck(self, deck_id: Hashable) -> bool:
        return deck_id in self._decks

    def drop_deck(self, deck_id: Hashable) -> bool:
        return self._decks.pop(deck_id, None) is not None

    def get_slides(self, deck_id: Hashable) -> List[Slide]:
        return self._copies(self._deck(deck_id))

    def get_slide(self, deck_id: Hashable, slide_id: str) -> Slide:
        deck = self._deck(deck_id)
        return deck[self._index_of(deck, deck_id, slide_id)].model_copy(deep=True)

    # slide operations

    def create_slide(
        self,
        deck_id: Hashable,
        title: str,
        image_ref: str,
        group: str = DEFAULT_GROUP,
        order: Optional[int] = None
    ) -> Slide:
        """Add a slide; appended unless an order position is requested"""
        deck = self._deck(deck_id)
        slide = Slide(
            id=self._new_id(),
            title=title,
            image_ref=image_ref,
            group=group or DEFAULT_GROUP,
            order=len(deck) + 1
        )

        position = len(deck) if order is None else self._clamp(order, len(deck) + 1) - 1
        deck.insert(position, slide)
        self._renumber(deck)

        logger.info(f"Created slide {slide.id} in deck {deck_id} at position {slide.order}")
        return slide.model_copy(deep=True)

    def update_slide(
        self,
        deck_id: Hashable,
        slide_id: str,
        changes: Union[SlideUpdate, Dict[str, Any]]
    ) -> Slide:
        """Merge the provided fields into a slide"""
        if isinstance(changes, SlideUpdate):
            changes = changes.model_dump(exclude_none=True)

        unknown = set(changes) - EDITABLE_FIELDS
        if unknown:
            raise ValueError(f"Fields cannot be updated: {sorted(unknown)}")

        deck = self._deck(deck_id)
        index = self._index_of(deck, deck_id, slide_id)
        slide = deck[index]

        for field in ("title", "image_ref", "group"):
            if field in changes and changes[field] is not None:
                setattr(slide, field, changes[field])
        slide.updated_at = utc_now()

        # an order change is a move within the deck
        if changes.get("order") is not None:
            deck.pop(index)
            deck.insert(self._clamp(changes["order"], len(deck) + 1) - 1, slide)
            self._renumber(deck)

        return slide.model_copy(deep=True)

    def delete_slide(self, deck_id: Hashable, slide_id: str) -> Slide:
        """Remove a slide and close the gap it leaves"""
        deck = self._deck(deck_id)
        removed = deck.pop(self._index_of(deck, deck_id, slide_id))
        self._renumber(deck)

        logger.info(f"Deleted slide {slide_id} from deck {deck_id}")
        return removed

    def reorder(self, deck_id: Hashable, moves: Sequence[Move]) -> List[Slide]:
        """
        Apply requested positions.

        Repeated entries for one slide collapse to the last. Entries claim their
        target slot from last to first, so a later entry wins a contested slot
        and the displaced slide takes the nearest free slot after its target
        (before it when none is left). Slides not named keep their relative
        order in the remaining slots.
        """
        deck = self._deck(deck_id)
        by_id = {slide.id: slide for slide in deck}

        requested: Dict[str, int] = {}
        for move in moves:
            slide_id, new_order = self._as_move(move)
            if slide_id not in by_id:
                raise NotFound(f"Slide not found: {slide_id}", context={"deck_id": str(deck_id)})
            requested.pop(slide_id, None)
            requested[slide_id] = new_order

        size = len(deck)
        slots: List[Optional[Slide]] = [None] * size
        for slide_id, target in reversed(list(requested.items())):
            slots[self._free_slot(slots, self._clamp(target, size) - 1)] = by_id[slide_id]

        rest = iter(slide for slide in deck if slide.id not in requested)
        for index in range(size):
            if slots[index] is None:
                slots[index] = next(rest)

        deck[:] = slots
        self._renumber(deck)
        return self._copies(deck)

    def move_to_group(self, deck_id: Hashable, slide_id: str, new_group: str) -> Slide:
        """Relabel a slide's group; order is untouched"""
        deck = self._deck(deck_id)
        slide = deck[self._index_of(deck, deck_id, slide_id)]
        slide.group = new_group or DEFAULT_GROUP
        slide.updated_at = utc_now()
        return slide.model_copy(deep=True)

    def duplicate_slide(self, deck_id: Hashable, slide_id: str) -> Slide:
        """Append a copy of a slide with a provenance suffix on its title"""
        deck = self._deck(deck_id)
        original = deck[self._index_of(deck, deck_id, slide_id)]

        copy = Slide(
            id=self._new_id(),
            title=f"{original.title}{COPY_SUFFIX}",
            image_ref=original.image_ref,
            group=original.group,
            order=len(deck) + 1,
            page_number=original.page_number
        )
        deck.append(copy)
        return copy.model_copy(deep=True)

    def import_pages(
        self,
        deck_id: Hashable,
        pages: Sequence[PageImage],
        group: str = DEFAULT_GROUP
    ) -> List[Slide]:
        """Append converted pages to an existing deck"""
        deck = self._deck(deck_id)
        imported = []
        for page in pages:
            slide = Slide(
                id=self._new_id(),
                title=f"Page {page.page_number}",
                image_ref=page.raster_handle,
                group=group,
                order=len(deck) + 1,
                page_number=page.page_number
            )
            deck.append(slide)
            imported.append(slide.model_copy(deep=True))

        logger.info(f"Imported {len(imported)} pages into deck {deck_id}")
        return imported

    # grouping

    def list_grouped(self, deck_id: Hashable) -> List[SlideGroup]:
        """Groups in first-seen order, each group's slides ascending by order"""
        groups: Dict[str, List[Slide]] = {}
        for slide in self._deck(deck_id):
            groups.setdefault(slide.group, []).append(slide.model_copy(deep=True))

        return [
            SlideGroup(name=name, order=index, slides=sorted(slides, key=lambda s: s.order))
            for index, (name, slides) in enumerate(groups.items())
        ]

    def list_group_names(self, deck_id: Hashable) -> List[str]:
        return sorted({slide.group for slide in self._deck(deck_id)})

    def rename_group(self, deck_id: Hashable, old_name: str, new_name: str) -> int:
        return self._relabel(deck_id, old_name, new_name or DEFAULT_GROUP)

    def delete_group(self, deck_id: Hashable, name: str) -> int:
        """Dissolve a group, moving its slides to the default group"""
        return self._relabel(deck_id, name, DEFAULT_GROUP)

    # alphabetical helpers

    def sort_alphabetically(self, deck_id: Hashable) -> List[Slide]:
        deck = self._deck(deck_id)
        deck.sort(key=lambda slide: slide.title.casefold())
        self._renumber(deck)
        return self._copies(deck)

    def filter_by_letter(self, deck_id: Hashable, letter: str) -> List[Slide]:
        letter = letter.lower()
        return [
            slide.model_copy(deep=True) for slide in self._deck(deck_id)
            if slide.title.lower().startswith(letter)
        ]

    def alphabet_letters(self, deck_id: Hashable) -> List[str]:
        letters = set()
        for slide in self._deck(deck_id):
            first = slide.title[:1].upper()
            if "A" <= first <= "Z":
                letters.add(first)
        return sorted(letters)

    # internals

    def _deck(self, deck_id: Hashable) -> List[Slide]:
        try:
            return self._decks[deck_id]
        except KeyError:
            raise NotFound(f"Deck not found: {deck_id}")

    def _index_of(self, deck: List[Slide], deck_id: Hashable, slide_id: str) -> int:
        for index, slide in enumerate(deck):
            if slide.id == slide_id:
                return index
        raise NotFound(f"Slide not found: {slide_id}", context={"deck_id": str(deck_id)})

    def _relabel(self, deck_id: Hashable, old_name: str, new_name: str) -> int:
        changed = 0
        for slide in self._deck(deck_id):
            if slide.group == old_name:
                slide.group = new_name
                slide.updated_at = utc_now()
                changed += 1
        return changed

    @staticmethod
    def _renumber(deck: List[Slide], touch: bool = True):
        for position, slide in enumerate(deck, start=1):
            if slide.order != position:
                slide.order = position
                if touch:
                    slide.updated_at = utc_now()

    @staticmethod
    def _free_slot(slots: List[Optional[Slide]], start: int) -> int:
        for index in range(start, len(slots)):
            if slots[index] is None:
                return index
        for index in range(start - 1, -1, -1):
            if slots[index] is None:
                return index
        raise RuntimeError("No free slot left while reordering")

    @staticmethod
    def _clamp(position: int, upper: int) -> int:
        return max(1, min(int(position), max(upper, 1)))

    @staticmethod
    def _as_move(move: Move) -> Tuple[str, int]:
        if isinstance(move, ReorderItem):
            return move.slide_id, move.new_order
        if isinstance(move, dict):
            return move["slide_id"], int(move["new_order"])
        slide_id, new_order = move
        return slide_id, int(new_order)

    @staticmethod
    def _new_id() -> str:
        return f"slide_{uuid.uuid4().hex[:12]}"

    @staticmethod
    def _copies(deck: List[Slide]) -> List[Slide]:
        return [slide.model_copy(deep=True) for slide in deck]
