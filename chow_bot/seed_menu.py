"""
Seed the default menu into the configured storage backend.

    python -m chow_bot.seed_menu

Seeding is skipped when the menu already has items.
"""

# Load environment variables before config is imported
from dotenv import load_dotenv
load_dotenv()

from chow_bot.logging_config import setup_logging
from chow_bot.menu_catalog import seed_menu
from chow_bot.storage import init_storage


def main() -> None:
    setup_logging()
    storage = init_storage()
    inserted = seed_menu(storage)
    if inserted:
        print(f"Seeded {inserted} menu items into {storage.name} storage.")
    else:
        print("Menu already populated. Not seeding again.")


if __name__ == "__main__":
    main()
