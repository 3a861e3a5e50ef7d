"""
lms_api - HTTP access to the remote LMS REST API
"""
from .client import LMSClient, certificate_filename
from .errors import AuthenticationRequired, LMSAPIError, PermissionDenied

__all__ = [
    'LMSClient',
    'LMSAPIError',
    'AuthenticationRequired',
    'PermissionDenied',
    'certificate_filename',
]
