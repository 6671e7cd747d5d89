"""Test the trust line index derivation and matching."""

import hashlib
from unittest import TestCase

from xrpl.core.addresscodec import decode_classic_address

from airdropper.models import Asset
from airdropper.trustlines import TrustLineResolver, currency_bytes, ripple_state_index

from conftest import ISSUER, address, trust_line


class TestRippleStateIndex(TestCase):
    def test_matches_layout(self):
        holder = address(1)  # 0x01 * 20 sorts below the issuer's 0xC8 * 20
        expected = hashlib.sha512(
            bytes.fromhex("0072")
            + decode_classic_address(holder)
            + decode_classic_address(ISSUER)
            + bytes(12) + b"USD" + bytes(5)
        ).digest()[:32].hex().upper()
        self.assertEqual(ripple_state_index(holder, ISSUER, "USD"), expected)

    def test_party_order_does_not_matter(self):
        self.assertEqual(
            ripple_state_index(address(1), ISSUER, "USD"),
            ripple_state_index(ISSUER, address(1), "USD"),
        )

    def test_currency_changes_index(self):
        self.assertNotEqual(
            ripple_state_index(address(1), ISSUER, "USD"),
            ripple_state_index(address(1), ISSUER, "EUR"),
        )

    def test_currency_bytes(self):
        self.assertEqual(currency_bytes("USD").hex(), "0000000000000000000000005553440000000000")
        hex_code = "0158415500000000C1F76FF6ECB0BAC600000000"
        self.assertEqual(currency_bytes(hex_code).hex().upper(), hex_code)
        self.assertEqual(len(currency_bytes(hex_code)), 20)


class TestQualifies(TestCase):
    def setUp(self):
        self.asset = Asset("USD", ISSUER)
        self.resolver = TrustLineResolver(self.asset)
        self.holder = address(1)

    def test_derive_uses_issuer(self):
        self.assertEqual(self.resolver.derive(self.holder), ripple_state_index(self.holder, ISSUER, "USD"))

    def test_trust_line_qualifies(self):
        self.assertTrue(self.resolver.qualifies(self.holder, trust_line(self.holder, self.asset)))

    def test_missing_node(self):
        self.assertFalse(self.resolver.qualifies(self.holder, None))

    def test_wrong_entry_type(self):
        node = trust_line(self.holder, self.asset)
        node["LedgerEntryType"] = "Offer"
        self.assertFalse(self.resolver.qualifies(self.holder, node))

    def test_other_currency(self):
        node = trust_line(self.holder, Asset("EUR", ISSUER))
        self.assertFalse(self.resolver.qualifies(self.holder, node))

    def test_other_parties(self):
        node = trust_line(address(2), self.asset)
        self.assertFalse(self.resolver.qualifies(self.holder, node))

    def test_malformed_node(self):
        self.assertFalse(self.resolver.qualifies(self.holder, {"LedgerEntryType": "RippleState"}))
