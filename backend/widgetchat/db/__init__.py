"""Database and cache clients.

Imports are intentionally NOT eagerly loaded here so that importing the
pipeline does not pull in database drivers.
Use explicit imports: ``from widgetchat.db.redis import RedisClient``, etc.
"""
