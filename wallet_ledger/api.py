import logging
from typing import Optional

from fastapi import APIRouter, FastAPI, HTTPException, status
from fastapi.middleware.cors import CORSMiddleware

from .config import get_settings
from .exceptions import (
    BelowMinimumRedemptionError,
    ConcurrentModificationConflictError,
    IdempotencyConflictError,
    InsufficientBalanceError,
    InvalidAmountError,
    JournalMismatchError,
    MerchantCoinNotFoundError,
    StorageUnavailableError,
    WalletLedgerError,
)
from .models import (
    AddMerchantCoinRequest,
    AwardCoinsRequest,
    RedeemCoinsRequest,
    ExpireCoinsRequest,
    CoinBalanceResponse,
    Transaction,
    TransactionHistoryResponse,
    TransactionResponse,
    Wallet,
    WalletStats,
)
from .service import WalletService

settings = get_settings()
logging.basicConfig(level=settings.log_level)

ERROR_STATUS: dict[type[WalletLedgerError], int] = {
    MerchantCoinNotFoundError: status.HTTP_404_NOT_FOUND,
    InvalidAmountError: status.HTTP_400_BAD_REQUEST,
    InsufficientBalanceError: status.HTTP_400_BAD_REQUEST,
    BelowMinimumRedemptionError: status.HTTP_400_BAD_REQUEST,
    IdempotencyConflictError: status.HTTP_409_CONFLICT,
    ConcurrentModificationConflictError: status.HTTP_409_CONFLICT,
    StorageUnavailableError: status.HTTP_503_SERVICE_UNAVAILABLE,
    JournalMismatchError: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def to_http_error(error: WalletLedgerError) -> HTTPException:
    code = ERROR_STATUS.get(type(error), status.HTTP_400_BAD_REQUEST)
    headers = {"Retry-After": "1"} if error.retryable else None
    return HTTPException(status_code=code, detail=str(error), headers=headers)


def create_app(
    service: Optional[WalletService] = None,
    root_path: str = "",
    api_prefix: Optional[str] = None,
) -> FastAPI:
    wallet_service = service or WalletService(settings=settings)

    app = FastAPI(
        title=settings.project_name,
        description="Per-user merchant coin wallets with an append-only transaction journal",
        version="1.0.0",
        root_path=root_path,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health", tags=["System"])
    def health_check():
        return {"status": "healthy", "service": "wallet-ledger"}

    router = APIRouter(prefix=settings.api_prefix if api_prefix is None else api_prefix)

    @router.get("/wallets/{user_id}", response_model=Wallet, tags=["Wallets"])
    def get_wallet(user_id: str) -> Wallet:
        try:
            return wallet_service.get_or_create_wallet(user_id)
        except WalletLedgerError as e:
            raise to_http_error(e)

    @router.post("/wallets/{user_id}/merchant-coins", response_model=TransactionResponse,
                 status_code=status.HTTP_201_CREATED, tags=["Wallets"])
    def add_merchant_coin(user_id: str, request: AddMerchantCoinRequest) -> TransactionResponse:
        try:
            transaction = wallet_service.add_merchant_coin(
                user_id, request.merchant_id, request.config,
                initial_balance=request.initial_balance,
                idempotency_key=request.idempotency_key,
            )
        except WalletLedgerError as e:
            raise to_http_error(e)
        return TransactionResponse(transaction=transaction, message=f"{request.config.coin_name} added to wallet")

    @router.post("/wallets/{user_id}/award", response_model=TransactionResponse, tags=["Coins"])
    def award_coins(user_id: str, request: AwardCoinsRequest) -> TransactionResponse:
        try:
            transaction = wallet_service.award_coins(
                user_id, request.merchant_id, request.amount, request.description,
                metadata=request.metadata,
                idempotency_key=request.idempotency_key,
                rates=request.rates,
            )
        except WalletLedgerError as e:
            raise to_http_error(e)
        return TransactionResponse(transaction=transaction, message="Coins awarded successfully")

    @router.post("/wallets/{user_id}/redeem", response_model=TransactionResponse, tags=["Coins"])
    def redeem_coins(user_id: str, request: RedeemCoinsRequest) -> TransactionResponse:
        try:
            transaction = wallet_service.redeem_coins(
                user_id, request.merchant_id, request.amount, request.description,
                idempotency_key=request.idempotency_key,
                rates=request.rates,
            )
        except WalletLedgerError as e:
            raise to_http_error(e)
        return TransactionResponse(transaction=transaction, message="Coins redeemed successfully")

    @router.post("/wallets/{user_id}/expire", response_model=TransactionResponse, tags=["Coins"])
    def expire_coins(user_id: str, request: ExpireCoinsRequest) -> TransactionResponse:
        try:
            transaction = wallet_service.expire_coins(
                user_id, request.merchant_id, request.amount, request.description,
                idempotency_key=request.idempotency_key,
            )
        except WalletLedgerError as e:
            raise to_http_error(e)
        return TransactionResponse(transaction=transaction, message="Coins expired")

    @router.get("/wallets/{user_id}/balances/{merchant_id}", response_model=CoinBalanceResponse, tags=["Coins"])
    def get_coin_balance(user_id: str, merchant_id: str) -> CoinBalanceResponse:
        return CoinBalanceResponse(
            user_id=user_id,
            merchant_id=merchant_id,
            balance=wallet_service.get_coin_balance(user_id, merchant_id),
        )

    @router.get("/wallets/{user_id}/transactions", response_model=list[Transaction], tags=["Journal"])
    def get_transactions(user_id: str, limit: Optional[int] = None) -> list[Transaction]:
        if limit is not None and limit < 0:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="limit must not be negative")
        return wallet_service.get_transactions(user_id, limit)

    @router.get("/wallets/{user_id}/history", response_model=TransactionHistoryResponse, tags=["Journal"])
    def get_transaction_history(user_id: str, limit: Optional[int] = None, offset: int = 0) -> TransactionHistoryResponse:
        if (limit is not None and limit < 0) or offset < 0:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="limit and offset must not be negative")
        return wallet_service.get_transaction_history(user_id, limit, offset)

    @router.get("/wallets/{user_id}/stats", response_model=WalletStats, tags=["Wallets"])
    def get_wallet_stats(user_id: str) -> WalletStats:
        try:
            return wallet_service.get_wallet_stats(user_id)
        except WalletLedgerError as e:
            raise to_http_error(e)

    app.include_router(router)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=settings.server.host, port=settings.server.port)
