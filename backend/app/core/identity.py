"""
Caller identity. Authentication happens upstream of this service; requests
carry the resolved user id and the device id as headers.
"""
from typing import Optional
from fastapi import Header

USER_HEADER = "X-User-Id"
DEVICE_HEADER = "X-Device-Id"


def get_user_id(x_user_id: Optional[str] = Header(None)) -> Optional[str]:
    return x_user_id or None


def get_device_id(x_device_id: Optional[str] = Header(None)) -> Optional[str]:
    return x_device_id or None
