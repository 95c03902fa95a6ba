############################################################
#
# toolgate - AI Tool Usage Metering and Provider Failover
#
# __init__.py: Application package initialization
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""toolgate Application Package."""

from backend import __version__

__all__ = ["__version__"]
