"""Device classification from the User-Agent header."""

from user_agents import parse as parse_ua

DEVICE_MOBILE = "mobile"
DEVICE_TABLET = "tablet"
DEVICE_DESKTOP = "desktop"


def classify_device(user_agent: str | None) -> str:
    """Map a UA string to mobile / tablet / desktop.

    Tablets are checked first: iPad and Android tablet UAs often also
    carry the "Mobile" token.
    """
    if not user_agent:
        return DEVICE_DESKTOP

    parsed = parse_ua(user_agent)
    if parsed.is_tablet:
        return DEVICE_TABLET
    if parsed.is_mobile:
        return DEVICE_MOBILE
    return DEVICE_DESKTOP
