"""
MongoDB Setup Script
Tests connection and initializes database with collections, indexes and default settings.
"""
import asyncio
from shopbridge.config import settings
from shopbridge.models.settings import DEFAULT_SETTINGS, default_welcome_template
from shopbridge.repositories import MongoDeliveryStore, db_manager
from shopbridge.repositories.connection import (
    MEMBER_TRACKING,
    MESSAGE_QUEUE,
    MESSAGE_TEMPLATES,
    PROCESSED_ORDERS,
    SETTINGS,
)

COLLECTIONS = [MESSAGE_QUEUE, PROCESSED_ORDERS, MEMBER_TRACKING, SETTINGS, MESSAGE_TEMPLATES]


async def setup_mongodb():
    """Initialize the shopbridge database with indexes and seed data."""
    print("🔄 Connecting to MongoDB...")
    print(f"   Database: {settings.mongodb_database}")
    print()

    try:
        await db_manager.connect()
        if not await db_manager.ping():
            raise RuntimeError(f"MongoDB at {settings.mongodb_uri} is not answering")
        print("✅ Connection successful!")
        print()

        db = db_manager.database

        existing_collections = await db.list_collection_names()
        print(f"📦 Existing collections: {existing_collections or 'None'}")
        print()

        print("🔨 Creating indexes...")
        await db_manager.create_indexes()
        print("✅ Indexes created successfully!")
        print()

        print("🌱 Seeding default settings and templates...")
        store = MongoDeliveryStore(db)
        await store.seed_defaults(DEFAULT_SETTINGS, [default_welcome_template(settings.shopify_shop_url)])
        print("✅ Defaults seeded!")
        print()

        print("📊 Verifying indexes:")
        total = 0
        for name in COLLECTIONS:
            indexes = await db[name].index_information()
            total += len(indexes)
            print(f"   {name}: {len(indexes)} indexes")
            for idx_name in indexes:
                print(f"      - {idx_name}")

        print()
        print("🎉 MongoDB setup complete!")
        print(f"   ✅ Collections: {', '.join(COLLECTIONS)}")
        print(f"   ✅ Indexes: {total} total")
        print()

    except Exception as e:
        print(f"❌ Error: {e}")
        print()
        print("💡 Troubleshooting:")
        print("   1. Check MONGODB_URI in your .env")
        print("   2. Verify your IP is allowed by the cluster's network access list")
        print("   3. Ensure the server or cluster is running")
        raise

    finally:
        await db_manager.disconnect()
        print("👋 Disconnected from MongoDB")


if __name__ == "__main__":
    asyncio.run(setup_mongodb())
