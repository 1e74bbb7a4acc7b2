"""
Sample bookmarks for trying perch on an empty tree.

Items are created with CreationMode.SEEDING so the organizer neither
embeds nor relocates them; run a sync afterwards to index them.
"""

import logging
from typing import Optional

from .api import Organizer
from .types import CreationMode, Item

logger = logging.getLogger(__name__)

SAMPLE_BOOKMARKS = {
    "Vegetables": [
        ("Carrot - Wikipedia", "https://en.wikipedia.org/wiki/Carrot"),
        ("Broccoli - Wikipedia", "https://en.wikipedia.org/wiki/Broccoli"),
    ],
    "Geography": [
        ("Mount Everest - Wikipedia", "https://en.wikipedia.org/wiki/Mount_Everest"),
        ("Amazon River - Wikipedia", "https://en.wikipedia.org/wiki/Amazon_River"),
    ],
    "Celebrities": [
        ("Albert Einstein - Wikipedia", "https://en.wikipedia.org/wiki/Albert_Einstein"),
        ("Leonardo da Vinci - Wikipedia", "https://en.wikipedia.org/wiki/Leonardo_da_Vinci"),
    ],
    "Science": [
        ("Quantum mechanics - Wikipedia", "https://en.wikipedia.org/wiki/Quantum_mechanics"),
        ("DNA - Wikipedia", "https://en.wikipedia.org/wiki/DNA"),
    ],
}


async def seed_sample_tree(
    organizer: Organizer,
    parent_id: Optional[str] = None,
    samples: dict[str, list[tuple[str, str]]] = SAMPLE_BOOKMARKS,
) -> list[Item]:
    """
    Create one folder per topic with its bookmarks.

    Returns:
        Every created item, folders first within each topic
    """
    tree = organizer.tree
    created: list[Item] = []
    logger.info("Seeding test bookmarks...")
    for folder_title, bookmarks in samples.items():
        folder = await tree.create_item(folder_title, parent_id=parent_id)
        await organizer.on_item_created(folder, mode=CreationMode.SEEDING)
        created.append(folder)
        logger.info("Created folder: %s", folder_title)

        for title, url in bookmarks:
            bookmark = await tree.create_item(title, url=url, parent_id=folder.id)
            await organizer.on_item_created(bookmark, mode=CreationMode.SEEDING)
            created.append(bookmark)
            logger.debug("Added bookmark: %s", title)

    logger.info("Test bookmarks seeded successfully")
    return created
