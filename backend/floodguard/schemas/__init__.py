"""
Pydantic schemas for API request/response validation.
"""

from .common import *
from .flood import *
