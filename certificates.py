"""
Carbon impact certificates.

This is a cosmetic simulation: token ids and hashes are random strings and
nothing is written to any ledger. Minting reads the user's totals but never
changes them.
"""
import logging
import secrets
import string
import time
from decimal import Decimal
from typing import List

from aggregates import AggregateMaintainer
from errors import ValidationError
from schemas import Certificate, Reward, collection_of, utcnow

logger = logging.getLogger(__name__)

CERTIFICATES = collection_of(Certificate)
REWARDS = collection_of(Reward)

MIN_TRACKED_KG = Decimal("10")
MINT_REWARD_TOKENS = 100

_BASE36 = string.digits + string.ascii_lowercase


def random_hash() -> str:
    return "0x" + secrets.token_hex(32)


def new_token_id() -> str:
    suffix = "".join(secrets.choice(_BASE36) for _ in range(9))
    return f"ECO-{int(time.time() * 1000)}-{suffix}"


def mint_certificate(maintainer: AggregateMaintainer, user_id: str) -> Certificate:
    store = maintainer.store
    profile = maintainer.ensure_profile(user_id)
    if profile.total_carbon_footprint < MIN_TRACKED_KG:
        raise ValidationError(f"You need at least {MIN_TRACKED_KG}kg CO2e tracked to mint a certificate")

    token_id = new_token_id()
    tracked = f"{profile.total_carbon_footprint:.2f}"
    certificate = Certificate(
        user_id=user_id,
        token_id=token_id,
        carbon_amount=profile.total_carbon_footprint,
        verification_hash=random_hash(),
        blockchain_status="minted",
        metadata={
            "name": f"Carbon Impact Certificate #{token_id}",
            "description": f"This certificate records {tracked}kg CO2e carbon footprint tracking",
            "image": f"https://api.dicebear.com/7.x/shapes/svg?seed={token_id}",
            "attributes": [
                {"trait_type": "Carbon Tracked", "value": f"{tracked} kg CO2e"},
                {"trait_type": "Green Points", "value": profile.total_green_points},
                {"trait_type": "Issue Date", "value": utcnow().date().isoformat()},
            ],
        },
    )
    reward = Reward(
        user_id=user_id,
        token_amount=MINT_REWARD_TOKENS,
        reward_type="nft_mint",
        transaction_hash=random_hash(),
    )
    with store.transaction():
        store.insert(CERTIFICATES, certificate.model_dump())
        store.insert(REWARDS, reward.model_dump())
    logger.info("Minted certificate %s for %s", token_id, user_id)
    return certificate


def list_certificates(store, user_id: str) -> List[Certificate]:
    return [Certificate(**d) for d in store.find(CERTIFICATES, {"user_id": user_id}, sort=[("issue_date", -1)])]


def list_rewards(store, user_id: str) -> List[Reward]:
    return [Reward(**d) for d in store.find(REWARDS, {"user_id": user_id}, sort=[("earned_date", -1)])]


def total_tokens(store, user_id: str) -> int:
    return sum(r.token_amount for r in list_rewards(store, user_id))
