import logging
import sqlite3
from typing import List, Optional

from marketplace.models import Category
from marketplace.services.database import Database, database
from marketplace.services.errors import MarketplaceNotFoundError

logger = logging.getLogger(__name__)

DEFAULT_CATEGORIES = [
    {
        "id": "cat_babysitting",
        "slug": "babysitting",
        "name": "Babysitting & Nanny",
        "description": "Childcare at home, school pick-ups and evening sitting.",
        "icon": "baby",
    },
    {
        "id": "cat_home_support",
        "slug": "home-support",
        "name": "Home Support",
        "description": "Furniture assembly, small repairs, painting and odd jobs.",
        "icon": "home",
    },
    {
        "id": "cat_elderly_support",
        "slug": "elderly-support",
        "name": "Elderly Support",
        "description": "Company, errands and daily assistance for seniors.",
        "icon": "heart",
    },
    {
        "id": "cat_tax_admin",
        "slug": "tax-admin",
        "name": "Tax & Admin",
        "description": "Tax returns, paperwork and administrative help.",
        "icon": "file-text",
    },
    {
        "id": "cat_entrepreneur_startup",
        "slug": "entrepreneur-startup",
        "name": "Entrepreneur & Startup",
        "description": "Business plans, company creation and growth coaching.",
        "icon": "rocket",
    },
    {
        "id": "cat_cleaning",
        "slug": "cleaning",
        "name": "Cleaning",
        "description": "Regular or one-off home cleaning.",
        "icon": "sparkles",
    },
]


class CategoryStore:
    def __init__(self, db: Database):
        self.db = db

    def seed_defaults(self) -> int:
        inserted = 0
        with self.db.transaction() as conn:
            for order, category in enumerate(DEFAULT_CATEGORIES):
                cursor = conn.execute(
                    """
                    INSERT OR IGNORE INTO categories (id, slug, name, description, icon, sort_order)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (
                        category["id"],
                        category["slug"],
                        category["name"],
                        category["description"],
                        category["icon"],
                        order,
                    ),
                )
                inserted += cursor.rowcount
        if inserted:
            logger.info("Seeded %s categories", inserted)
        return inserted

    def add_category(
        self,
        *,
        slug: str,
        name: str,
        category_id: Optional[str] = None,
        description: Optional[str] = None,
        icon: Optional[str] = None,
        sort_order: int = 0,
    ) -> Category:
        category = Category(
            id=category_id or f"cat_{slug.replace('-', '_')}",
            slug=slug,
            name=name,
            description=description,
            icon=icon,
            sort_order=sort_order,
        )
        with self.db.transaction() as conn:
            conn.execute(
                """
                INSERT INTO categories (id, slug, name, description, icon, sort_order)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (category.id, category.slug, category.name, category.description, category.icon, category.sort_order),
            )
        return category

    def list_categories(self) -> List[Category]:
        with self.db.transaction() as conn:
            rows = conn.execute("SELECT * FROM categories ORDER BY sort_order, name").fetchall()
        return [self._row_to_category(row) for row in rows]

    def find_category(self, category_id: str) -> Optional[Category]:
        with self.db.transaction() as conn:
            row = conn.execute("SELECT * FROM categories WHERE id = ?", (category_id,)).fetchone()
        return self._row_to_category(row) if row else None

    def get_category(self, category_id: str) -> Category:
        category = self.find_category(category_id)
        if not category:
            raise MarketplaceNotFoundError(f"Category not found: {category_id}")
        return category

    def get_category_by_slug(self, slug: str) -> Category:
        with self.db.transaction() as conn:
            row = conn.execute("SELECT * FROM categories WHERE slug = ?", (slug,)).fetchone()
        if not row:
            raise MarketplaceNotFoundError(f"Category not found: {slug}")
        return self._row_to_category(row)

    def _row_to_category(self, row: sqlite3.Row) -> Category:
        return Category(
            id=row["id"],
            slug=row["slug"],
            name=row["name"],
            description=row["description"],
            icon=row["icon"],
            sort_order=int(row["sort_order"]),
        )


category_store = CategoryStore(database)
