from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field, ConfigDict


class TransactionType(str, Enum):
    EARNED = "earned"
    REDEEMED = "redeemed"
    AWARDED = "awarded"
    EXPIRED = "expired"

    @property
    def is_credit(self) -> bool:
        return self in (TransactionType.EARNED, TransactionType.AWARDED)


class Tier(str, Enum):
    BRONZE = "bronze"
    SILVER = "silver"
    GOLD = "gold"
    PLATINUM = "platinum"


class CoinRates(BaseModel):
    earn_rate: Decimal = Field(default=Decimal("1.0"), ge=0, description="Coins earned per currency unit spent")
    redemption_rate: Decimal = Field(default=Decimal("10"), gt=0, description="Coins needed per currency unit of discount")
    minimum_redemption: int = Field(default=0, ge=0)


class CoinConfig(CoinRates):
    """Snapshot of a merchant's coin program, supplied by merchant settings."""

    merchant_name: str
    coin_name: str
    coin_symbol: str
    brand_color: str = "#000000"
    logo_url: Optional[str] = None

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "merchant_name": "Corner Bakery",
            "coin_name": "Crumbs",
            "coin_symbol": "CRB",
            "brand_color": "#c0392b",
            "earn_rate": 1.0,
            "redemption_rate": 10,
            "minimum_redemption": 50
        }
    })


class MerchantCoinBalance(BaseModel):
    merchant_id: str
    merchant_name: str
    coin_name: str
    coin_symbol: str
    brand_color: str
    logo_url: Optional[str] = None
    balance: int = Field(default=0, ge=0)
    earn_rate: Decimal
    redemption_rate: Decimal
    minimum_redemption: int = 0
    tier: Tier = Tier.BRONZE
    added_at: datetime

    model_config = ConfigDict(from_attributes=True)


class Transaction(BaseModel):
    id: str
    type: TransactionType
    merchant_id: str
    merchant_name: str
    amount: int
    balance_after: int
    description: str
    timestamp: datetime
    idempotency_key: Optional[str] = None
    metadata: Optional[dict] = None

    model_config = ConfigDict(from_attributes=True)

    @property
    def signed_amount(self) -> int:
        return self.amount if self.type.is_credit else -self.amount


class Wallet(BaseModel):
    user_id: str
    merchant_coins: dict[str, MerchantCoinBalance] = Field(default_factory=dict)
    transactions: list[Transaction] = Field(default_factory=list)
    total_value: Decimal = Decimal("0.00")
    total_coins_earned: int = 0
    total_coins_redeemed: int = 0
    version: int = 0
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class AddMerchantCoinRequest(BaseModel):
    merchant_id: str
    config: CoinConfig
    initial_balance: int = Field(default=0, ge=0)
    idempotency_key: Optional[str] = None


class AwardCoinsRequest(BaseModel):
    idempotency_key: Optional[str] = Field(default=None, description="Unique key to prevent duplicate awards")
    merchant_id: str
    amount: int
    description: str
    rates: Optional[CoinRates] = None
    metadata: Optional[dict] = None

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "idempotency_key": "order-9001-coins",
            "merchant_id": "m1",
            "amount": 500,
            "description": "Purchase reward for order #9001"
        }
    })


class RedeemCoinsRequest(BaseModel):
    idempotency_key: Optional[str] = Field(default=None, description="Unique key to prevent duplicate redemptions")
    merchant_id: str
    amount: int
    description: str
    rates: Optional[CoinRates] = None


class ExpireCoinsRequest(BaseModel):
    idempotency_key: Optional[str] = None
    merchant_id: str
    amount: int
    description: str = "Coins expired"


class TransactionResponse(BaseModel):
    transaction: Optional[Transaction] = None
    message: str


class CoinBalanceResponse(BaseModel):
    user_id: str
    merchant_id: str
    balance: int


class TransactionHistoryResponse(BaseModel):
    user_id: str
    transactions: list[Transaction]
    total_count: int
    limit: int
    offset: int


class WalletStats(BaseModel):
    user_id: str
    total_coins: int
    total_value: Decimal
    total_merchants: int
    total_earned: int
    total_redeemed: int
    total_expired: int
    recent_transactions: list[Transaction]
