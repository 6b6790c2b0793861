"""
Test-user acquisition on top of the credential pool.

``acquire_user`` is what test setup calls: recycle a pooled account when one is
available, otherwise generate a brand-new identity and pool it for later runs.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Optional

from core.credential_store import CredentialStatus, CredentialStore, UserCredentials
from core.data_generator import (
    DateOfBirth,
    GeneratedUserData,
    generate_details_data,
    generate_identity,
    generate_user_data,
)
from exceptions import (
    CredentialStoreError,
    RecoveryStrategy,
    get_recovery_strategy,
    log_error_with_context,
    log_recovery_attempt,
)


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FullUserData:
    # Everything the sign-up and address forms ask for
    name: str
    email: str
    password: str
    gender: str
    first_name: str
    last_name: str
    address: str
    country: str
    state: str
    city: str
    zipcode: str
    mobile_number: str
    date_of_birth: DateOfBirth


def acquire_user(
    store: CredentialStore,
    generator: Callable[[], GeneratedUserData] = generate_user_data,
) -> UserCredentials:
    """
    Take a user from ``store``, falling back to freshly generated credentials.

    A pool miss (missing file, empty pool, all used, or a malformed pool) is
    answered with new credentials. They are appended already marked used, so no
    other worker can be handed the account while this test is using it.
    Store errors with another recovery strategy (lock timeouts, I/O failures)
    propagate, as does a failure to append.
    """
    try:
        user = store.allocate()
        logger.info(f"Using pooled test user {user.email}")
        return user
    except CredentialStoreError as e:
        if get_recovery_strategy(e) is not RecoveryStrategy.FRESH_CREDENTIALS:
            raise
        correlation_id = log_error_with_context(e, e.error_context, level="info")
        reason = type(e).__name__

    generated = generator()
    store.append(generated.name, generated.email, generated.password, status=CredentialStatus.USED)
    log_recovery_attempt(
        correlation_id=correlation_id,
        strategy=RecoveryStrategy.FRESH_CREDENTIALS.value,
        attempt_number=1,
        success=True,
        reason=reason,
        email=generated.email,
    )
    logger.info(f"No pooled user available ({reason}); generated {generated.email}")
    return UserCredentials(generated.name, generated.email, generated.password)


def register_for_reuse(store: CredentialStore, user) -> None:
    """Pool an account that a test has just created through the UI or the API."""
    store.append(user.name, user.email, user.password)


def build_user_data(credentials: Optional[UserCredentials] = None) -> FullUserData:
    """
    Complete sign-up data, optionally around existing credentials.

    First and last name come from the display name; a single-word name keeps
    the generated last name.
    """
    identity = generate_identity()
    if credentials is None:
        credentials = generate_user_data(identity)
    details = generate_details_data(identity)

    first_name, _, rest = credentials.name.partition(" ")
    return FullUserData(
        name=credentials.name,
        email=credentials.email,
        password=credentials.password,
        gender=details.gender,
        first_name=first_name,
        last_name=rest or details.last_name,
        address=details.address,
        country=details.country,
        state=details.state,
        city=details.city,
        zipcode=details.zipcode,
        mobile_number=details.mobile_number,
        date_of_birth=details.date_of_birth,
    )
