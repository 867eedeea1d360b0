import html
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

import bleach


def sanitize_text(value: Optional[str]) -> str:
    """Sanitize a user-supplied string before it is stored.

    - Removes NULL bytes
    - Strips HTML tags using bleach.clean(..., strip=True)
    - Stores plain text: the entities bleach escapes are decoded again
    - Trims whitespace
    """
    if value is None:
        return ""
    val = value.replace("\x00", "")
    # decoding can expose markup that was entity-encoded, so repeat until stable
    while True:
        cleaned = html.unescape(bleach.clean(val, tags=[], strip=True))
        if cleaned == val:
            break
        val = cleaned
    return val.strip()


# Business rule: prices stored rounded to 2 decimals

def round_price(value: Decimal) -> Decimal:
    return value.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
