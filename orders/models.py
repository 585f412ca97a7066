"""
Expose ORM models for Django's auto-discovery while keeping real definitions
under the infrastructure module.
"""

from orders.infra.models import *
