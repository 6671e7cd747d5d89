"""Trust lines as recipient destinations.

A holder can only receive an issued currency over a trust line to the issuer, so the
RippleState ledger object between the two is the destination that qualification
looks up.
"""

import logging

from xrpl.core.addresscodec import decode_classic_address

import airdropper.constants as C
from airdropper.models import Asset
from airdropper.utils import sha512half

log = logging.getLogger("airdropper.trustlines")


def currency_bytes(currency: str) -> bytes:
    """160-bit currency code: 3-char ISO style codes sit at bytes 12..14, anything else is raw hex."""
    if len(currency) == 3:
        return bytes(12) + currency.encode("ascii") + bytes(5)
    return bytes.fromhex(currency)


def ripple_state_index(a: str, b: str, currency: str) -> str:
    low, high = sorted((decode_classic_address(a), decode_classic_address(b)))
    return sha512half(C.RIPPLE_STATE_SPACE + low + high + currency_bytes(currency)).hex().upper()


class TrustLineResolver:
    def __init__(self, asset: Asset):
        self.asset = asset

    def derive(self, holder: str) -> str:
        return ripple_state_index(holder, self.asset.issuer, self.asset.currency)

    def qualifies(self, holder: str, node: dict | None) -> bool:
        """True when `node` is this asset's trust line between exactly `holder` and the issuer."""
        if not isinstance(node, dict) or node.get("LedgerEntryType") != "RippleState":
            return False
        try:
            low = node["LowLimit"]
            high = node["HighLimit"]
            parties = {low["issuer"], high["issuer"]}
            currency = node["Balance"]["currency"]
        except (KeyError, TypeError):
            log.debug("Malformed RippleState for %s: %s", holder, node)
            return False
        if len(currency) == 40:
            currency = currency.upper()
        if currency != self.asset.currency:
            return False
        return parties == {holder, self.asset.issuer}
