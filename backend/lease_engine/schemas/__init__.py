"""Pydantic schemas for the lease engine API."""

from lease_engine.schemas.base import *
from lease_engine.schemas.lease import *
from lease_engine.schemas.payment import *
from lease_engine.schemas.schedule import *
