"""Addresses shared across settlement tests."""

BASE_USDC = "0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913"
POLYGON_USDC = "0x3c499c542cEF5E3811e1192ce70d8cC03d5c3359"
MERCHANT_WALLET = "0x8ba1f109551bD432803012645Ac136ddd64DBA72"
PAYER = "0x71C7656EC7ab88b098defB751B7401B5f6d8976F"
MERCHANT_ID = "merchant-42"
