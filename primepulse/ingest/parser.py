"""Amazon product page parser using selectolax.

Best-effort extraction of the fields the detector works on. Selectors are
tried in order; the first one yielding a usable value wins.
"""

import logging
import re
from decimal import Decimal, InvalidOperation
from typing import Optional

from selectolax.lexbor import LexborHTMLParser

from primepulse.errors import ParseError
from primepulse.models import Availability, ListingData

logger = logging.getLogger(__name__)

PRICE_SELECTORS = [
    ".a-price-whole",
    ".a-offscreen",
    "#priceblock_dealprice",
    "#priceblock_ourprice",
]

LIST_PRICE_SELECTORS = [
    ".a-price.a-text-price .a-offscreen",
    ".a-text-strike .a-offscreen",
    "#listPrice",
]

PRIME_SELECTORS = [
    ".a-icon-prime",
    '[aria-label="Prime"]',
    ".prime-logo",
]

# Robot check / captcha interstitials
BLOCK_MARKERS = [
    "enter the characters you see below",
    "sorry, we just need to make sure you're not a robot",
    "/errors/validatecaptcha",
]

_PRICE_RE = re.compile(r"(\d+(?:\.\d+)?)")
_RATING_RE = re.compile(r"(\d\.\d) out of")
_REVIEWS_RE = re.compile(r"([\d,]+) ratings?")
_COUPON_RE = re.compile(r"Save \$([\d,]+\.\d{2})")
_OFFERS_RE = re.compile(r"\(([\d,]+)\)")


def parse_price(text: Optional[str]) -> Optional[Decimal]:
    """Extract a decimal price from text like "$1,299.99"."""
    if not text:
        return None

    cleaned = text.replace("$", "").replace(",", "").strip()
    match = _PRICE_RE.search(cleaned)
    if not match:
        return None
    try:
        return Decimal(match.group(1))
    except InvalidOperation:
        return None


class AmazonListingParser:
    """Parses a product detail page into ListingData."""

    def parse(self, html: str, identifier: str) -> ListingData:
        lowered = html.lower()
        if any(marker in lowered for marker in BLOCK_MARKERS):
            raise ParseError(identifier, "blocked by robot check")

        tree = LexborHTMLParser(html)

        title = self._text(tree, "#productTitle")
        price = self._split_price(tree) or self._first_price(tree, PRICE_SELECTORS)
        if title is None and price is None:
            raise ParseError(identifier, "no title or price found on page")

        has_coupon, coupon_amount = self._coupon(tree)

        data = ListingData(
            price=price,
            list_price=self._first_price(tree, LIST_PRICE_SELECTORS),
            has_coupon=has_coupon,
            coupon_amount=coupon_amount,
            seller_name=self._text(tree, "#sellerProfileTriggerId"),
            seller_count=self._seller_count(tree),
            availability=Availability.parse(self._text(tree, "#availability span")),
            prime_eligible=any(tree.css_first(sel) is not None for sel in PRIME_SELECTORS),
            rating=self._rating(tree),
            review_count=self._review_count(tree),
            title=title,
        )
        logger.debug(f"Parsed {identifier}: price={data.price} availability={data.availability.value}")
        return data

    @staticmethod
    def _text(tree: LexborHTMLParser, selector: str) -> Optional[str]:
        node = tree.css_first(selector)
        if node is None:
            return None
        text = node.text(strip=True)
        return text or None

    def _first_price(self, tree: LexborHTMLParser, selectors: list[str]) -> Optional[Decimal]:
        for selector in selectors:
            price = parse_price(self._text(tree, selector))
            if price is not None:
                return price
        return None

    def _split_price(self, tree: LexborHTMLParser) -> Optional[Decimal]:
        """Join the ".a-price-whole" and ".a-price-fraction" spans."""
        whole = self._text(tree, ".a-price-whole")
        if not whole:
            return None
        digits = whole.replace(",", "").rstrip(".")
        fraction = self._text(tree, ".a-price-fraction") or "00"
        return parse_price(f"{digits}.{fraction}")

    def _rating(self, tree: LexborHTMLParser) -> Optional[float]:
        text = self._text(tree, ".a-icon-alt")
        if not text:
            return None
        match = _RATING_RE.search(text)
        return float(match.group(1)) if match else None

    def _review_count(self, tree: LexborHTMLParser) -> Optional[int]:
        text = self._text(tree, "#acrCustomerReviewText")
        if not text:
            return None
        match = _REVIEWS_RE.search(text)
        return int(match.group(1).replace(",", "")) if match else None

    def _coupon(self, tree: LexborHTMLParser) -> tuple[bool, Optional[Decimal]]:
        text = self._text(tree, ".couponText")
        if text is None:
            for node in tree.css(".a-color-price"):
                candidate = node.text(strip=True)
                if "coupon" in candidate.lower():
                    text = candidate
                    break
        if text is None:
            return False, None

        match = _COUPON_RE.search(text)
        amount = Decimal(match.group(1).replace(",", "")) if match else None
        return True, amount

    def _seller_count(self, tree: LexborHTMLParser) -> int:
        # "New (4) from $39.99" on the offer listing link
        text = self._text(tree, "#olp-upd-new a, #olp_feature_div a")
        if text:
            match = _OFFERS_RE.search(text)
            if match:
                return max(1, int(match.group(1).replace(",", "")))
        return 1
