"""
Collection setup and demo data.

    python seed.py

creates the indexes, fills an empty catalog with demo products and creates
an admin account (ADMIN_EMAIL / ADMIN_PASSWORD) when there is none.
"""
import logging

import config
from database import PRODUCTS, USERS, Database
from schemas import Product, User
from security import hash_password

logger = logging.getLogger(__name__)

DEMO_PRODUCTS = [
    {
        "name": "Classic Solitaire Ring",
        "sku": "R001",
        "description": "14K gold band with a single cubic stone.",
        "price": 100000,
        "stock": 5,
        "category": "반지",
        "options": [
            {
                "type": "size",
                "label": "Size",
                "values": [
                    {"value": "9", "label": "9호", "price_adjustment": 0, "stock": 2},
                    {"value": "11", "label": "11호", "price_adjustment": 0, "stock": 2},
                    {"value": "13", "label": "13호", "price_adjustment": 5000, "stock": 1},
                ],
            },
        ],
    },
    {
        "name": "Pearl Drop Necklace",
        "sku": "N001",
        "description": "Freshwater pearl on a fine silver chain.",
        "price": 89000,
        "stock": 10,
        "category": "목걸이",
        "options": [
            {
                "type": "length",
                "label": "Chain length",
                "values": [
                    {"value": "40", "label": "40cm", "price_adjustment": 0, "stock": 5},
                    {"value": "45", "label": "45cm", "price_adjustment": 3000, "stock": 5},
                ],
            },
        ],
    },
    {
        "name": "Mini Hoop Earrings",
        "sku": "E001",
        "description": "Everyday hoops in sterling silver.",
        "price": 39000,
        "stock": 20,
        "category": "귀걸이",
    },
    {
        "name": "Twisted Chain Bracelet",
        "sku": "B001",
        "description": "Layering bracelet with a lobster clasp.",
        "price": 45000,
        "stock": 15,
        "category": "팔찌",
    },
    {
        "name": "Gift Box",
        "sku": "G001",
        "description": "Gift packaging with a message card.",
        "price": 3000,
        "stock": 100,
        "category": "기타",
    },
]


def init_collections(db: Database):
    db.ensure_indexes()
    logger.info("Indexes ready on %s", ", ".join(sorted(db.db.list_collection_names())))


def seed_demo_data(db: Database, admin_email: str = None, admin_password: str = None) -> dict:
    seeded = {"products": 0, "admin": False}
    if db.count_documents(PRODUCTS) == 0:
        for p in DEMO_PRODUCTS:
            db.create_document(PRODUCTS, Product(**p))
        seeded["products"] = len(DEMO_PRODUCTS)
    else:
        logger.info("Products already exist, skipping demo catalog")

    admin_password = admin_password or config.ADMIN_PASSWORD
    if db.count_documents(USERS, {"role": "admin"}) == 0:
        if not admin_password:
            logger.warning("ADMIN_PASSWORD not set, no admin account created")
        else:
            admin = User(
                email=admin_email or config.ADMIN_EMAIL,
                name="Admin",
                password_hash=hash_password(admin_password),
                role="admin",
            )
            db.create_document(USERS, admin)
            seeded["admin"] = True
    return seeded


if __name__ == "__main__":
    config.setup_logging()
    database = Database()
    if not database.connect():
        raise SystemExit("MongoDB is not reachable, check DATABASE_URL")
    try:
        init_collections(database)
        result = seed_demo_data(database)
        logger.info("Seeded %d products, admin created: %s", result["products"], result["admin"])
    finally:
        database.close()
