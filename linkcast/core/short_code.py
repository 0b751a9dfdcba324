"""
Short code allocation.

Codes are case-sensitive tokens over [A-Za-z0-9]. Generated codes are 6
characters drawn uniformly from the 62-char alphabet, which gives ~5.7e10
possible codes; a collision check runs before every insert and the
unique index on links.short_code settles any race between check and insert.

Flow for create_link:
  1. allocate() picks a free-looking code (requested or generated)
  2. Store.insert_link() inserts guarded by the unique index
  3. If the insert lost a race: generated code → try a fresh candidate,
     requested code → CodeTaken
"""

import re
import secrets
import string
from decimal import Decimal

from linkcast.core.errors import AllocationExhausted, CodeTaken, ValidationError
from linkcast.models.tables import Link

import structlog

logger = structlog.get_logger()

ALPHABET = string.ascii_letters + string.digits
CODE_LENGTH = 6
MAX_ATTEMPTS = 10
MAX_REQUESTED_LENGTH = 32

_CODE_PATTERN = re.compile(r"^[A-Za-z0-9]+$")


def generate_code(length: int = CODE_LENGTH) -> str:
    """Generate a random short code like 'a3xK9m'."""
    return "".join(secrets.choice(ALPHABET) for _ in range(length))


def validate_requested_code(code: str) -> str:
    if not code or not _CODE_PATTERN.match(code):
        raise ValidationError("Custom code may only contain letters and digits")
    if len(code) > MAX_REQUESTED_LENGTH:
        raise ValidationError(f"Custom code too long (max {MAX_REQUESTED_LENGTH} chars)")
    return code


def validate_destination_url(url: str | None) -> str:
    """Only http(s) destinations are accepted."""
    if not url or not url.strip():
        raise ValidationError("Missing original_url")
    url = url.strip()
    if not url.startswith(("http://", "https://")):
        raise ValidationError("URL must start with http:// or https://")
    if len(url) > 2048:
        raise ValidationError("URL too long (max 2048 chars)")
    return url


async def allocate(store, requested_code: str | None = None) -> str:
    """Return a short code that is not in use right now.

    Only reads the store — the caller must still insert through the
    unique-guarded Store.insert_link.
    """
    if requested_code is not None:
        code = validate_requested_code(requested_code)
        if await store.code_exists(code):
            raise CodeTaken(f"Short code '{code}' is already taken")
        return code

    for attempt in range(1, MAX_ATTEMPTS + 1):
        candidate = generate_code()
        if not await store.code_exists(candidate):
            return candidate
        logger.info("short_code_collision", attempt=attempt)

    raise AllocationExhausted("Could not generate unique short code")


async def create_link(
    store,
    original_url: str,
    requested_code: str | None = None,
    is_affiliate: bool = False,
    redirect_delay: int = 3,
    title: str = "",
    created_by_ip: str | None = None,
) -> Link:
    """Allocate a code and insert the owning Link."""
    original_url = validate_destination_url(original_url)
    if redirect_delay < 0:
        raise ValidationError("redirect_delay cannot be negative")

    for _ in range(MAX_ATTEMPTS):
        code = await allocate(store, requested_code)
        link = await store.insert_link(
            short_code=code,
            original_url=original_url,
            title=title or "",
            is_affiliate=is_affiliate,
            redirect_delay=redirect_delay,
            total_clicks=0,
            estimated_revenue=Decimal("0.00"),
            is_active=True,
            created_by_ip=created_by_ip,
        )
        if link is not None:
            logger.info("link_created", link_id=str(link.id), short_code=code,
                        affiliate=is_affiliate)
            return link

        # Lost the race between check and insert
        if requested_code is not None:
            raise CodeTaken(f"Short code '{code}' is already taken")

    raise AllocationExhausted("Could not generate unique short code")
