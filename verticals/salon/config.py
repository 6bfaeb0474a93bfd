"""Salon vertical configuration.

Builds the shop-wide ``SalonConfig`` from the environment once at import;
per-salon booking rules live in the ``booking_rules`` table.
"""

from domain.domain_config import SalonConfig

config = SalonConfig.from_env()
