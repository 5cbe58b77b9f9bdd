"""Input snapshot for one check-in QR render."""

from dataclasses import dataclass, replace


@dataclass(frozen=True, repr=False)
class CheckinIdentity:
    """Everything the engine reads about a location at render time.

    ``checkin_token`` is the sole credential behind the public check-in URL,
    so ``repr`` never shows it.
    """

    location_id: str
    checkin_token: str
    display_name: str
    logo_resource: str | None = None
    primary_color: str | None = None
    accent_color: str | None = None

    def with_token(self, token: str) -> "CheckinIdentity":
        return replace(self, checkin_token=token)

    def __repr__(self) -> str:
        return (
            f"CheckinIdentity(location_id={self.location_id!r}, "
            f"display_name={self.display_name!r}, logo={self.logo_resource is not None}, "
            f"primary={self.primary_color!r}, accent={self.accent_color!r})"
        )
