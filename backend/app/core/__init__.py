############################################################
#
# toolgate - AI Tool Usage Metering and Provider Failover
#
# __init__.py: Core application logic package
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""Core application logic for toolgate."""
