"""
Database and store configuration.
"""

import os
from typing import Optional

from dotenv import load_dotenv
from pymongo import MongoClient

load_dotenv()

MONGODB_URI = os.getenv('MONGODB_URI', 'mongodb://localhost:27017/')
MONGODB_DB_NAME = os.getenv('MONGODB_DB_NAME', 'dble_db')

# "mongo" or "memory"
PIPELINE_STORE = os.getenv('PIPELINE_STORE', 'mongo').lower()

_client: Optional[MongoClient] = None


def get_db():
    """Shared database handle, connected on first use."""
    global _client
    if _client is None:
        _client = MongoClient(MONGODB_URI)
    return _client[MONGODB_DB_NAME]
