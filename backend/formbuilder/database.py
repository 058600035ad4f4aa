from motor.motor_asyncio import AsyncIOMotorClient
from formbuilder.config import settings

# tz_aware so timestamps read back compare cleanly with datetime.now(timezone.utc)
client = AsyncIOMotorClient(settings.MONGO_URI, tz_aware=True)
db = client[settings.DB_NAME]

forms_collection = db.forms
