############################################################
#
# toolgate - AI Tool Usage Metering and Provider Failover
#
# __init__.py: Security utilities package exports
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""Security utilities for toolgate."""

from backend.app.security.crypto import (
    MASKED_API_KEY,
    decrypt_api_key,
    encrypt_api_key,
    is_masked,
)

__all__ = [
    "MASKED_API_KEY",
    "decrypt_api_key",
    "encrypt_api_key",
    "is_masked",
]
