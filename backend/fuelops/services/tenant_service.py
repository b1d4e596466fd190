"""
Station Scoping Helpers

Every request acts for one user of one organization. Station ids coming from
client input must be validated against that user before any read or write:

1. The station must exist and belong to the user's organization.
2. Station-scoped roles (station manager, chef de piste) only reach their own station.

USAGE:
    from fuelops.services.tenant_service import require_station_access

    station = require_station_access(station_id, g.current_user)
"""

from ..extensions import db
from ..errors import AccessDeniedError, NotFoundError
from ..models import Station, User
from ..models.auth import ORG_WIDE_ROLES


def require_station_access(station_id: int, user: User) -> Station:
    """
    Return the Station if `user` may act on it.

    Raises:
        NotFoundError if the station does not exist or belongs to another org
        (a foreign station is reported as missing, not as forbidden)
        AccessDeniedError if a station-scoped user targets another station
    """
    station = db.session.get(Station, station_id)
    if not station or station.org_id != user.org_id:
        raise NotFoundError("Station not found", code="BIZ_STATION_NOT_FOUND")

    if user.role not in ORG_WIDE_ROLES and user.station_id != station.id:
        raise AccessDeniedError("Access denied to this station")

    return station


def get_accessible_station_ids(user: User) -> list[int] | None:
    """Station ids a user may list; None means every station of the org."""
    if user.role in ORG_WIDE_ROLES:
        return None
    return [user.station_id] if user.station_id else []
