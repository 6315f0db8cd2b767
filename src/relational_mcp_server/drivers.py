"""
Driver availability checks.

Each vendor is served by one DB-API client library. Availability is resolved with
`importlib.util.find_spec` so a missing driver is reported before any import side
effects or network activity happen.
"""

import logging
from dataclasses import dataclass
from importlib.util import find_spec
from typing import Dict, Optional

from .exceptions import MissingDriverError
from .models import DatabaseVendor

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DriverRequirement:
    """Client library required by a vendor."""

    vendor: DatabaseVendor
    module: str
    package: Optional[str]
    install_command: str


DRIVER_REQUIREMENTS: Dict[DatabaseVendor, DriverRequirement] = {
    DatabaseVendor.POSTGRESQL: DriverRequirement(
        vendor=DatabaseVendor.POSTGRESQL,
        module="psycopg2",
        package="psycopg2-binary",
        install_command="pip install psycopg2-binary",
    ),
    DatabaseVendor.MYSQL: DriverRequirement(
        vendor=DatabaseVendor.MYSQL,
        module="pymysql",
        package="PyMySQL",
        install_command="pip install pymysql",
    ),
    DatabaseVendor.SQLITE: DriverRequirement(
        vendor=DatabaseVendor.SQLITE,
        module="sqlite3",
        package=None,
        install_command="sqlite3 ships with CPython; install a Python build compiled with SQLite support",
    ),
}


def get_driver_requirement(vendor) -> DriverRequirement:
    return DRIVER_REQUIREMENTS[DatabaseVendor(vendor)]


def is_driver_available(vendor) -> bool:
    """Return True when the vendor's client library can be imported."""
    requirement = get_driver_requirement(vendor)
    try:
        return find_spec(requirement.module) is not None
    except (ImportError, ValueError):
        return False


def get_install_instructions(vendor) -> str:
    """Human-readable installation instruction for the vendor's driver."""
    requirement = get_driver_requirement(vendor)
    if requirement.package is None:
        return requirement.install_command
    return f"Install it with: {requirement.install_command}"


def check_driver(vendor) -> None:
    """
    Ensure the vendor's driver is importable.

    Raises:
        MissingDriverError: If the client library is not installed
    """
    requirement = get_driver_requirement(vendor)
    if is_driver_available(vendor):
        return

    logger.error(
        f"Driver '{requirement.module}' for {requirement.vendor.value} is not installed",
        extra={"vendor": requirement.vendor.value, "driver": requirement.module},
    )
    raise MissingDriverError(
        f"The {requirement.vendor.value} driver '{requirement.module}' is not installed. "
        f"{get_install_instructions(vendor)}"
    )
