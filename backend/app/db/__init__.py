############################################################
#
# toolgate - AI Tool Usage Metering and Provider Failover
#
# __init__.py: Database package initialization and exports
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""Database package for toolgate."""

from backend.app.db.base import Base
from backend.app.db.session import get_async_db, engine, AsyncSessionLocal

__all__ = ["Base", "get_async_db", "engine", "AsyncSessionLocal"]
