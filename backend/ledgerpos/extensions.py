# Overview: Flask extension instances for database, migrations and cache invalidation.

from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate

from .services.cache_service import CacheInvalidator

db = SQLAlchemy()
migrate = Migrate()
cache_invalidator = CacheInvalidator()
