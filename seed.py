"""
Maintenance commands.

    python seed.py categories
    python seed.py hash-password --email someone@example.com --password secret
    python seed.py demo-users --count 100
"""
import argparse
import logging
import sys

from config import LOG_LEVEL
from database import create_document, get_db
from schemas import Category, User
from security import hash_password

logger = logging.getLogger("artvia.seed")

DEFAULT_CATEGORIES = [
    {"name": "Home", "nameUz": "Bosh sahifa", "nameRu": "Главная", "slug": "home"},
    {"name": "Fashion illustration", "nameUz": "Fashion illustration", "nameRu": "Fashion иллюстрация",
     "slug": "fashion-illustration"},
    {"name": "Amaliy san'at", "nameUz": "Amaliy san'at", "nameRu": "Прикладное искусство", "slug": "amaliy-sanat"},
    {"name": "Grafika", "nameUz": "Grafika", "nameRu": "Графика", "slug": "grafika"},
    {"name": "Haykaltaroshlik", "nameUz": "Haykaltaroshlik", "nameRu": "Скульптура", "slug": "haykaltaroshlik"},
    {"name": "Temirchilik", "nameUz": "Temirchilik", "nameRu": "Кузнечное дело", "slug": "temirchilik"},
    {"name": "Kulolchilik", "nameUz": "Kulolchilik", "nameRu": "Гончарное дело", "slug": "kulolchilik"},
    {"name": "Zardo'zlik va kashtachilik", "nameUz": "Zardo'zlik va kashtachilik",
     "nameRu": "Золотое шитье и вышивка", "slug": "zardozlik"},
    {"name": "Yog'och o'ymakorligi", "nameUz": "Yog'och o'ymakorligi", "nameRu": "Резьба по дереву",
     "slug": "yogoch-oymakorligi"},
]


def seed_categories() -> int:
    """Replace all categories with the default set."""
    get_db()["category"].delete_many({})
    for data in DEFAULT_CATEGORIES:
        create_document("category", Category(**data))
    return len(DEFAULT_CATEGORIES)


def hash_user_password(email: str, password: str) -> bool:
    res = get_db()["user"].update_one({"email": email}, {"$set": {"password": hash_password(password)}})
    return res.matched_count == 1


def seed_demo_users(count: int = 100) -> int:
    from faker import Faker
    fake = Faker()
    users = get_db()["user"]
    created = 0
    # Ensure one admin
    if not users.find_one({"$or": [{"role": "admin"}, {"isAdmin": True}]}):
        admin = User(name="Admin", email="admin@artvia.uz", password=hash_password("Admin@123"), role="admin",
                     is_admin=True)
        create_document("user", admin)
        created += 1
    existing_count = users.count_documents({"role": "user"})
    for _ in range(max(0, count - existing_count)):
        user = User(name=fake.name(), email=fake.unique.email(), password=hash_password("Password@123"))
        create_document("user", user)
        created += 1
    return created


def main(argv=None) -> int:
    logging.basicConfig(level=LOG_LEVEL, format="%(levelname)s %(message)s")
    parser = argparse.ArgumentParser(description="Artvia maintenance commands")
    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("categories", help="replace categories with the default set")
    hp = sub.add_parser("hash-password", help="store a hashed password for one account")
    hp.add_argument("--email", required=True)
    hp.add_argument("--password", required=True)
    du = sub.add_parser("demo-users", help="create Faker customers and an admin")
    du.add_argument("--count", type=int, default=100)
    args = parser.parse_args(argv)

    if args.command == "categories":
        logger.info("Seeded %d categories", seed_categories())
    elif args.command == "hash-password":
        if not hash_user_password(args.email, args.password):
            logger.error("User %s not found", args.email)
            return 1
        logger.info("Password hashed for %s", args.email)
    elif args.command == "demo-users":
        logger.info("Created %d users", seed_demo_users(args.count))
    return 0


if __name__ == "__main__":
    sys.exit(main())
