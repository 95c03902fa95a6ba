############################################################
#
# toolgate - AI Tool Usage Metering and Provider Failover
#
# __init__.py: Root package initialization and version definition
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""toolgate - usage metering and AI provider failover for AI website tools."""

__version__ = "0.1.0"
