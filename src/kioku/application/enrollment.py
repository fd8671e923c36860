"""Bulk enrollment of catalog levels into a learner's card set."""

import logging
from datetime import datetime

from kioku.domain.models import ItemFilter
from kioku.domain.ports import BulkEnroller, CatalogReader

from .scheduler import DEFAULT_PARAMS, SchedulerParams, new_card_state

logger = logging.getLogger(__name__)


async def enroll_level(
    catalog: CatalogReader,
    enroller: BulkEnroller,
    user_id: str,
    level: str,
    now: datetime,
    params: SchedulerParams = DEFAULT_PARAMS,
) -> int:
    """
    Enroll every item of a catalog level for a user.

    Cards the user already has are left as they are, so re-running this
    never resets progress.

    Returns:
        Number of cards newly created (0 if the level has no items).
    """
    items = await catalog.get_items_by_filter(ItemFilter(level=level))
    if not items:
        logger.warning(f"No catalog items found for level '{level}'")
        return 0

    item_ids = [item.item_id for item in items]
    defaults = new_card_state(user_id, "", now, params)
    created = await enroller.seed_cards(user_id, item_ids, defaults)

    logger.info(
        f"Enrolled {created} new card(s) from level {level} for user={user_id} "
        f"({len(item_ids) - created} already enrolled)"
    )
    return created
