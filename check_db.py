import asyncio
from motor.motor_asyncio import AsyncIOMotorClient
from app.config import settings

async def check():
    client = AsyncIOMotorClient(settings.MONGODB_URL)
    db = client[settings.MONGODB_DB_NAME]
    user_count = await db.users.count_documents({})
    bot_count = await db.bots.count_documents({})
    turn_count = await db.conversations.count_documents({})
    orphans = len(await db.conversations.distinct(
        "bot_id", {"bot_id": {"$nin": [str(i) for i in await db.bots.distinct("_id")]}}
    ))
    print(f"COUNT_STATUS: Users={user_count}, Bots={bot_count}, Turns={turn_count}, OrphanedBots={orphans}")
    client.close()

if __name__ == "__main__":
    asyncio.run(check())
