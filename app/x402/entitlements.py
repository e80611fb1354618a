# app/x402/entitlements.py
"""
Dataset entitlements granted after a successful settlement.

An entitlement copies the dataset's expiry into valid_until when it is
created and is never updated afterwards. Whether it is still valid is
computed on every read as now < valid_until.
"""
import logging
from datetime import datetime
from typing import Any, Optional

from app.services.store import DatasetStore, StoreError, get_store, to_db_time, utcnow
from app.x402 import audit
from app.x402.errors import (
    DatasetUnavailable,
    EntitlementLookupFailed,
    EntitlementWriteFailed,
    NoDataAvailable,
)
from app.x402.models import (
    DatasetSection,
    Entitlement,
    EntitlementSection,
    PaymentStatus,
    SharedDataset,
)

logger = logging.getLogger(__name__)


def get_latest_active_dataset(
    *,
    store: Optional[DatasetStore] = None,
    now: Optional[datetime] = None,
) -> SharedDataset:
    """
    Get the dataset a new entitlement should be granted on.

    Prefers the most recent unexpired dataset and falls back to the most
    recent one overall. Staleness is visible through the dataset's expiry.

    Raises:
        NoDataAvailable: If the store holds no dataset at all
        EntitlementLookupFailed: If the store cannot be read
    """
    store = store or get_store()
    now = now or utcnow()

    try:
        dataset = store.get_latest_active_dataset(now)
        if dataset is None:
            dataset = store.get_latest_dataset()
            if dataset is not None:
                logger.warning(f"No unexpired dataset, falling back to {dataset.id} (expired {dataset.expires_at})")
    except StoreError as e:
        logger.error(f"Failed to fetch shared dataset: {e}")
        audit.log_error("StoreError", str(e), context={"operation": "get_latest_active_dataset"})
        raise EntitlementLookupFailed("Failed to fetch shared dataset", str(e)) from e

    if dataset is None:
        raise NoDataAvailable("No shared dataset available. Pipeline may not have run yet.")

    return dataset


def grant_entitlement(
    wallet_address: str,
    shared_dataset_id: str,
    tx_hash: str,
    facilitator_response: Optional[Any] = None,
    *,
    store: Optional[DatasetStore] = None,
) -> Entitlement:
    """
    Record dataset access for a wallet after its payment settled.

    Raises:
        DatasetUnavailable: If no dataset has that id
        EntitlementLookupFailed: If the dataset cannot be read
        EntitlementWriteFailed: If the insert fails; the payment is then
            confirmed without an entitlement and needs manual reconciliation
    """
    store = store or get_store()

    try:
        dataset = store.get_dataset(shared_dataset_id)
    except StoreError as e:
        logger.error(f"Failed to get shared dataset {shared_dataset_id}: {e}")
        audit.log_reconciliation_required(
            wallet_address, tx_hash=tx_hash, shared_dataset_id=shared_dataset_id, reason=str(e),
        )
        raise EntitlementLookupFailed("Failed to get shared dataset expiration", str(e)) from e

    if dataset is None:
        audit.log_reconciliation_required(
            wallet_address, tx_hash=tx_hash, shared_dataset_id=shared_dataset_id,
            reason="dataset not found",
        )
        raise DatasetUnavailable("Failed to get shared dataset expiration")

    try:
        entitlement = store.insert_entitlement(
            wallet_address=wallet_address,
            shared_dataset_id=dataset.id,
            tx_hash=tx_hash,
            facilitator_response=facilitator_response,
            valid_until=dataset.expires_at,
        )
    except StoreError as e:
        logger.error(
            f"RECONCILIATION REQUIRED: payment {tx_hash} from {wallet_address} settled "
            f"but entitlement insert failed: {e}"
        )
        audit.log_reconciliation_required(
            wallet_address, tx_hash=tx_hash, shared_dataset_id=dataset.id, reason=str(e),
        )
        raise EntitlementWriteFailed(wallet_address, tx_hash, str(e)) from e

    logger.info(f"Granted entitlement {entitlement.id} to {wallet_address} until {entitlement.valid_until}")
    audit.log_entitlement_granted(
        wallet_address,
        entitlement_id=entitlement.id,
        shared_dataset_id=dataset.id,
        tx_hash=tx_hash,
        valid_until=to_db_time(entitlement.valid_until),
    )
    return entitlement


def get_status(
    wallet_address: str,
    *,
    store: Optional[DatasetStore] = None,
    now: Optional[datetime] = None,
) -> PaymentStatus:
    """
    Report the wallet's most recent entitlement and the dataset it unlocks.

    A wallet without entitlements gets a status with null sections. A
    missing linked dataset is reported as a null dataset section.

    Raises:
        EntitlementLookupFailed: If the store cannot be read
    """
    store = store or get_store()

    try:
        found = store.get_latest_entitlement(wallet_address)
    except StoreError as e:
        logger.error(f"Failed to fetch entitlement status for {wallet_address}: {e}")
        audit.log_error("StoreError", str(e), context={"operation": "get_status"}, wallet_address=wallet_address)
        raise EntitlementLookupFailed("Failed to fetch entitlement status", str(e)) from e

    now = now or utcnow()
    if found is None:
        return PaymentStatus(now=now)

    entitlement, dataset = found
    return PaymentStatus(
        dataset=DatasetSection(items=dataset.items, next_available_at=dataset.expires_at) if dataset else None,
        entitlement=EntitlementSection(
            id=entitlement.id,
            tx_hash=entitlement.tx_hash,
            valid_until=entitlement.valid_until,
            created_at=entitlement.created_at,
            is_valid=entitlement.is_valid_at(now),
        ),
        now=now,
        valid_until=entitlement.valid_until,
    )
